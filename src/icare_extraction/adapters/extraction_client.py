"""Extraction client - adapter that assembles per-patient FHIR bundles from data sources."""

import abc
import asyncio
import csv
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from icare_extraction.adapters.fhir_bundling import MessageBundler
from icare_extraction.config import ConfigurationError, ExtractionConfig
from icare_extraction.domain.model import as_utc

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    bundle: Dict[str, Any]
    extraction_errors: List[Exception] = field(default_factory=list)


class AbstractExtractionClient(abc.ABC):
    """Abstract base class for per-patient extraction clients."""

    async def init(self):
        """Prepare data sources before the first get."""
        pass

    @abc.abstractmethod
    async def get(self, mrn: str, from_date: Optional[str] = None, to_date: Optional[str] = None) -> ExtractionResult:
        """
        Extract all resources for one patient within the date window.

        Args:
            mrn: Patient medical record number
            from_date: Earliest date to extract, or None for no lower bound
            to_date: Latest date to extract, or None for no upper bound

        Returns:
            ExtractionResult with the patient bundle and any non-fatal errors

        Raises:
            Exception: Any failure that prevents building a bundle for this patient
        """
        raise NotImplementedError


class AbstractExtractor(abc.ABC):
    """A single data source producing FHIR resources for a patient."""

    def __init__(self, label: Optional[str] = None):
        self.label = label or type(self).__name__

    @abc.abstractmethod
    async def get(
        self,
        mrn: str,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError


class CSVResourceExtractor(AbstractExtractor):
    """
    Extract FHIR resources from a CSV file.

    Each row carries the patient ``mrn`` and a JSON-serialized FHIR ``resource``.
    When the date column is present, rows outside [from_date, to_date] are skipped.
    """

    def __init__(self, file_path: str, resource_type: Optional[str] = None,
                 date_column: str = "dateRecorded", label: Optional[str] = None, **_):
        super().__init__(label)
        self.file_path = file_path
        self.resource_type = resource_type
        self.date_column = date_column.lower()

    async def get(self, mrn, from_date=None, to_date=None, context=None):
        rows = await asyncio.to_thread(self._read_rows)
        resources = []
        for row in rows:
            if row.get("mrn") != mrn:
                continue
            if not self._in_window(row.get(self.date_column), from_date, to_date):
                continue
            resource = json.loads(row["resource"])
            if self.resource_type and resource.get("resourceType") != self.resource_type:
                raise ExtractorError(
                    f"{self.label}: expected {self.resource_type} but found {resource.get('resourceType')}"
                )
            resources.append(resource)

        logger.debug(f"{self.label}: found {len(resources)} resources")
        return resources

    def _read_rows(self) -> List[Dict[str, str]]:
        with open(self.file_path, newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f)
            return [{(k or "").strip().lower(): (v or "").strip() for k, v in row.items()} for row in reader]

    @staticmethod
    def _in_window(value, from_date, to_date) -> bool:
        if not value:
            return True
        recorded = as_utc(value)
        if from_date and recorded < as_utc(from_date):
            return False
        if to_date and recorded > as_utc(to_date):
            return False
        return True


class BaseExtractionClient(AbstractExtractionClient):
    """
    Run a list of extractors for a patient and assemble their resources into one bundle.

    An exception from a single extractor is recorded as a non-fatal extraction
    error; the remaining extractors still run.
    """

    def __init__(self, extractors: List[AbstractExtractor], wrap_bundles: bool = True):
        self.extractors = list(extractors)
        self.wrap_bundles = wrap_bundles

    async def get(self, mrn, from_date=None, to_date=None) -> ExtractionResult:
        bundle = {"resourceType": "Bundle", "type": "collection", "entry": []}
        extraction_errors = []

        for extractor in self.extractors:
            logger.debug(f"Extracting data for {mrn} with {extractor.label}")
            try:
                resources = await extractor.get(mrn, from_date=from_date, to_date=to_date, context=bundle)
            except Exception as e:
                logger.error(f"Extractor {extractor.label} failed: {e}")
                logger.debug("Extractor failure", exc_info=True)
                extraction_errors.append(e)
                continue
            bundle["entry"].extend({"resource": resource} for resource in resources)

        if self.wrap_bundles:
            bundle = MessageBundler.wrap(bundle)
        return ExtractionResult(bundle=bundle, extraction_errors=extraction_errors)


def _snake_case(name: str) -> str:
    """filePath -> file_path, so camelCase constructorArgs map onto keyword arguments."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


EXTRACTOR_TYPES = {
    "CSVResourceExtractor": CSVResourceExtractor,
}


def build_extraction_client(config: ExtractionConfig, extractor_types=None) -> BaseExtractionClient:
    """
    Build a BaseExtractionClient from the extractors listed in config.

    Raises:
        ConfigurationError: If an extractor type is unknown or its arguments are invalid
    """
    extractor_types = extractor_types or EXTRACTOR_TYPES
    extractors = []
    for extractor_config in config.extractors:
        extractor_cls = extractor_types.get(extractor_config.type)
        if extractor_cls is None:
            raise ConfigurationError(f"Unknown extractor type {extractor_config.type} for {extractor_config.label}")
        args = {
            _snake_case(key): value
            for key, value in {**config.common_extractor_args, **extractor_config.constructor_args}.items()
        }
        try:
            extractors.append(extractor_cls(label=extractor_config.label, **args))
        except TypeError as e:
            raise ConfigurationError(f"Invalid constructorArgs for {extractor_config.label}: {e}") from e

    logger.info(f"Registered {len(extractors)} extractors")
    return BaseExtractionClient(extractors)


class ExtractorError(Exception):
    """Exception raised for errors inside a single extractor."""
    pass
