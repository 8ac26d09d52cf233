"""FHIR message bundling - wrap extracted resources for ICAREdata submission."""

import logging
import uuid
from collections import Counter
from typing import Any, Dict

from fhirpathpy import evaluate

from icare_extraction.domain.model import utc_timestamp

logger = logging.getLogger(__name__)

MESSAGE_EVENT_SYSTEM = "http://example.org/fhir/message-events"
MESSAGE_EVENT_CODE = "icaredata-submission"
SOURCE_ENDPOINT_BASE = "http://icaredata.org/"
SITE_ID_PATH = "entry.where(resource.resourceType='ResearchStudy').resource.site"


def make_uuid_full_url(resource_id: str) -> str:
    return f"urn:uuid:{resource_id}"


class MessageBundler:
    """Build and inspect ICAREdata message bundles."""

    @staticmethod
    def wrap(bundle: Dict[str, Any]) -> Dict[str, Any]:
        """
        Wrap a raw collection of FHIR resources into a message bundle.

        The result has a MessageHeader entry whose focus references a
        collection Bundle entry holding the original entries unchanged.

        Args:
            bundle: FHIR Bundle dictionary with a flat entry list

        Returns:
            Message bundle dictionary
        """
        entries = bundle.get("entry", [])
        site_id = MessageBundler._extract_site_id(bundle)
        site_id_value = ""
        if isinstance(site_id, dict):
            site_id_value = site_id.get("identifier", {}).get("value", "")

        logger.info(f"Generating a new message bundle with {len(entries)} entries")

        message_header_id = str(uuid.uuid4())
        message_body_id = str(uuid.uuid4())

        message_header = {
            "resourceType": "MessageHeader",
            "id": message_header_id,
            "eventCoding": {
                "system": MESSAGE_EVENT_SYSTEM,
                "code": MESSAGE_EVENT_CODE,
            },
        }
        if site_id:
            message_header["sender"] = site_id
        message_header["source"] = {"endpoint": f"{SOURCE_ENDPOINT_BASE}{site_id_value}"}
        message_header["focus"] = [{"reference": make_uuid_full_url(message_body_id)}]

        return {
            "resourceType": "Bundle",
            "id": str(uuid.uuid4()),
            "type": "message",
            "timestamp": utc_timestamp(),
            "entry": [
                {
                    "fullUrl": make_uuid_full_url(message_header_id),
                    "resource": message_header,
                },
                {
                    "fullUrl": make_uuid_full_url(message_body_id),
                    "resource": {
                        "resourceType": "Bundle",
                        "id": message_body_id,
                        "type": "collection",
                        "entry": entries,
                    },
                },
            ],
        }

    @staticmethod
    def is_message_bundle(bundle: Dict[str, Any]) -> bool:
        """True when bundle already has the header + collection envelope shape."""
        if not isinstance(bundle, dict) or bundle.get("type") != "message":
            return False
        entries = bundle.get("entry") or []
        if len(entries) != 2:
            return False
        header = entries[0].get("resource", {})
        body = entries[1].get("resource", {})
        return header.get("resourceType") == "MessageHeader" and body.get("type") == "collection"

    @staticmethod
    def count_resources_by_type(message_bundle: Dict[str, Any]) -> Dict[str, int]:
        """
        Count resources in the collection bundle of a message bundle, by resourceType.

        Raises:
            MalformedBundleError: If entry[1] is missing or not a collection bundle
        """
        try:
            body = message_bundle["entry"][1]["resource"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedBundleError(f"Message bundle has no collection entry: {e}") from e
        if body.get("resourceType") != "Bundle" or body.get("type") != "collection":
            raise MalformedBundleError("entry[1] of message bundle is not a collection Bundle")

        return MessageBundler.count_entries_by_type(body.get("entry", []))

    @staticmethod
    def count_entries_by_type(entries) -> Dict[str, int]:
        try:
            counts = Counter(entry["resource"]["resourceType"] for entry in entries)
        except (KeyError, TypeError) as e:
            raise MalformedBundleError(f"Collection entry without a resourceType: {e}") from e
        return dict(counts)

    @staticmethod
    def collection_entries(message_bundle: Dict[str, Any]):
        return message_bundle["entry"][1]["resource"].get("entry", [])

    @staticmethod
    def _extract_site_id(bundle: Dict[str, Any]):
        """First ResearchStudy site reference in the bundle, if any."""
        try:
            sites = evaluate(bundle, SITE_ID_PATH, {})
        except Exception as e:
            logger.warning(f"Could not evaluate site identifier path: {e}")
            return None
        return sites[0] if sites else None


class MalformedBundleError(Exception):
    """Exception raised when a bundle does not have the message-bundle shape."""
    pass
