"""Patient roster - read the ordered list of MRNs from the configured CSV file."""

import csv
import logging
from typing import List

from icare_extraction.config import ConfigurationError

logger = logging.getLogger(__name__)


def parse_patient_ids(path_to_csv) -> List[str]:
    """
    Read patient MRNs in file order from a CSV file with an ``mrn`` column.

    Raises:
        ConfigurationError: If the file cannot be read or has no mrn column
    """
    try:
        with open(path_to_csv, newline="", encoding="utf-8-sig") as f:
            reader = csv.reader(f)
            header = next(reader, [])
            columns = [column.strip().lower() for column in header]
            if "mrn" not in columns:
                raise ConfigurationError(f"Patient roster {path_to_csv} has no mrn column")
            mrn_index = columns.index("mrn")
            patient_ids = [row[mrn_index].strip() for row in reader if len(row) > mrn_index and row[mrn_index].strip()]
    except (OSError, TypeError) as e:
        raise ConfigurationError(f"Could not read patient roster {path_to_csv}: {e}") from e

    logger.info(f"Read {len(patient_ids)} patient ids from {path_to_csv}")
    return patient_ids
