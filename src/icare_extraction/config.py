"""Configuration settings and config-file checks for the extraction client."""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, ValidationError


def get_config_path():
    """Get default path to the JSON configuration file from environment variables."""
    return os.environ.get("ICARE_CONFIG_PATH", os.path.join("config", "csv.config.json"))


def get_run_log_path():
    """Get default path to the run-log file from environment variables."""
    return os.environ.get("ICARE_RUN_LOG_PATH", os.path.join("logs", "run-logs.json"))


def get_log_level():
    """Get log level name from environment variables."""
    return os.environ.get("LOG_LEVEL", "INFO").upper()


def get_smtp_port():
    """Get SMTP port used when notificationInfo does not name one."""
    return int(os.environ.get("SMTP_PORT", "25"))


class NotificationInfo(BaseModel):
    """Email target for error summaries."""
    model_config = ConfigDict(populate_by_name=True)

    to: Optional[Union[str, List[str]]] = None
    from_address: Optional[str] = Field(default=None, alias="from")
    host: Optional[str] = None
    port: Optional[int] = None


class ExtractorConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    label: str
    type: str
    constructor_args: Dict[str, Any] = Field(default_factory=dict, alias="constructorArgs")


class ExtractionConfig(BaseModel):
    """Parsed JSON configuration file. Unknown fields are kept for extractors."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    patient_id_csv_path: Optional[str] = Field(default=None, alias="patientIdCsvPath")
    aws_config: Optional[Dict[str, Any]] = Field(default=None, alias="awsConfig")
    notification_info: Optional[NotificationInfo] = Field(default=None, alias="notificationInfo")
    extractors: List[ExtractorConfig] = Field(default_factory=list)
    common_extractor_args: Dict[str, Any] = Field(default_factory=dict, alias="commonExtractorArgs")
    post_empty_bundles: bool = Field(default=False, alias="postEmptyBundles")


def load_config(path_to_config) -> ExtractionConfig:
    """Read and validate the JSON configuration file at path_to_config."""
    full_path = Path(path_to_config).resolve() if path_to_config else None
    try:
        with open(full_path, encoding="utf-8") as f:
            raw = json.load(f)
        return ExtractionConfig.model_validate(raw)
    except (OSError, TypeError, ValueError, ValidationError) as e:
        raise ConfigurationError(
            f"The provided filepath to a configuration file {path_to_config}, full path {full_path} "
            f"did not point to a valid JSON file: {e}"
        ) from e


def is_valid_date(value: str) -> bool:
    try:
        date_parser.isoparse(value)
        return True
    except (TypeError, ValueError, OverflowError):
        return False


def check_input_and_config(
    config: ExtractionConfig,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    test_extraction: bool = False,
):
    """
    Check input args and the config variables required for a run.

    Raises:
        ConfigurationError: On invalid dates or missing required fields
    """
    if from_date and not is_valid_date(from_date):
        raise ConfigurationError("-f/--from-date is not a valid date.")

    if to_date and not is_valid_date(to_date):
        raise ConfigurationError("-t/--to-date is not a valid date.")

    if not config.patient_id_csv_path:
        raise ConfigurationError("patientIdCsvPath is required in config file")

    # awsConfig is not needed when nothing will be posted
    if not test_extraction and not config.aws_config:
        raise ConfigurationError("awsConfig is required in config file")


def check_log_file(path_to_logs):
    """Check that the run-log file exists and holds a JSON array."""
    try:
        with open(path_to_logs, encoding="utf-8") as f:
            content = json.load(f)
    except (OSError, TypeError, ValueError) as e:
        raise ConfigurationError(
            f"The provided filepath to a LogFile, {path_to_logs}, did not point to a valid JSON file. "
            "Create a json file with an empty array at this location."
        ) from e
    if not isinstance(content, list):
        raise ConfigurationError("Log file needs to be an array.")


class ConfigurationError(Exception):
    """Exception raised for invalid configuration, arguments or run-log files."""
    pass
