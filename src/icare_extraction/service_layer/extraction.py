"""Per-patient extraction loop."""

import logging
from typing import Optional, Sequence

from icare_extraction.adapters.extraction_client import AbstractExtractionClient
from icare_extraction.adapters.fhir_bundling import MalformedBundleError, MessageBundler
from icare_extraction.domain.model import ExtractionOutcome

module_logger = logging.getLogger(__name__)


async def extract_data_for_patients(
    patient_ids: Sequence[str],
    extraction_client: AbstractExtractionClient,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> ExtractionOutcome:
    """
    Extract data for each patient in roster order, one patient at a time.

    A failing get() is recorded against that patient's row and marks the
    extraction unsuccessful; the remaining patients are still extracted.
    Non-fatal extraction errors are recorded without affecting success.

    Args:
        patient_ids: MRNs in roster order
        extraction_client: Client whose get() returns an ExtractionResult
        from_date: Start of the date window, or None
        to_date: End of the date window, or None
        logger: Logger to report progress to

    Returns:
        ExtractionOutcome with the bundles, per-row errors and success flag
    """
    logger = logger or module_logger
    outcome = ExtractionOutcome()

    for index, mrn in enumerate(patient_ids):
        outcome.extraction_errors.start(index)
        try:
            logger.info(f"Extracting information for patient at row {index + 1} in .csv file")
            result = await extraction_client.get(mrn, from_date=from_date, to_date=to_date)
        except Exception as fatal_err:
            outcome.successful_extraction = False
            outcome.extraction_errors.add(index, fatal_err)
            logger.error(f"Fatal error extracting data for patient at row {index + 1}: {fatal_err}")
            logger.debug("Extraction failure", exc_info=True)
            continue

        outcome.extraction_errors.add(index, *result.extraction_errors)
        _log_resource_counts(result.bundle, index, logger)
        outcome.extracted_bundles.append(result.bundle)
        outcome.bundle_rows.append(index)

    return outcome


def _log_resource_counts(bundle, index: int, logger: logging.Logger):
    try:
        if MessageBundler.is_message_bundle(bundle):
            resource_count = MessageBundler.count_resources_by_type(bundle)
        else:
            # Raw collection bundles are only wrapped at dispatch
            resource_count = MessageBundler.count_entries_by_type(bundle.get("entry", []))
    except (MalformedBundleError, AttributeError) as e:
        logger.warning(f"Could not count resources for patient at row {index + 1}: {e}")
        return

    logger.info(f"Resources extracted for patient {index + 1} in .csv file")
    for resource_type, count in resource_count.items():
        logger.info(f"{resource_type}: {count} extracted")
