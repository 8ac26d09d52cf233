"""FHIR Messaging Client - Adapter for submitting message bundles to the ICAREdata platform."""

import abc
import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from icare_extraction.config import ConfigurationError, ExtractionConfig

logger = logging.getLogger(__name__)

PROCESS_MESSAGE_SCOPE = "system/$process-message"


class AbstractMessagingClient(abc.ABC):
    """Abstract base class for FHIR messaging client implementations."""

    @abc.abstractmethod
    async def can_send_message(self) -> bool:
        """True when the server offers the $process-message scope."""
        raise NotImplementedError

    @abc.abstractmethod
    async def authorize(self):
        """
        Obtain credentials for sending messages.

        Raises:
            MessagingClientError: If authorization fails
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def process_message(self, message_bundle: Dict[str, Any]):
        """
        Submit a FHIR message bundle.

        Raises:
            MessagingClientError: If the message is rejected or cannot be delivered
        """
        raise NotImplementedError


class HTTPMessagingClient(AbstractMessagingClient):
    """HTTP-based client for a SMART backend-services FHIR messaging endpoint."""

    def __init__(self, aws_config: Dict[str, Any], timeout: int = 30):
        """
        Initialize messaging client.

        Args:
            aws_config: awsConfig block from the configuration file; needs baseUrl
                and clientId, optionally clientSecret, tokenEndpoint and scope
            timeout: Request timeout in seconds
        """
        self.base_url = (aws_config.get("baseUrl") or aws_config.get("baseURL") or "").rstrip("/")
        if not self.base_url:
            raise ConfigurationError("awsConfig.baseUrl is required to create a messaging client")
        self.client_id = aws_config.get("clientId")
        self.client_secret = aws_config.get("clientSecret")
        self.token_endpoint = aws_config.get("tokenEndpoint")
        self.scope = aws_config.get("scope", PROCESS_MESSAGE_SCOPE)
        self.timeout = timeout
        self.access_token: Optional[str] = None
        self._smart_configuration: Optional[Dict[str, Any]] = None

    async def can_send_message(self) -> bool:
        smart_configuration = await self._get_smart_configuration()
        scopes = smart_configuration.get("scopes_supported", [])
        return PROCESS_MESSAGE_SCOPE in scopes

    async def authorize(self):
        smart_configuration = await self._get_smart_configuration()
        token_endpoint = self.token_endpoint or smart_configuration.get("token_endpoint")
        if not token_endpoint:
            raise MessagingClientError("No token endpoint configured or advertised by the server")

        data = {
            "grant_type": "client_credentials",
            "scope": self.scope,
            "client_id": self.client_id,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret

        token_response = await self._request("POST", token_endpoint, data=data)
        self.access_token = token_response.get("access_token")
        if not self.access_token:
            raise MessagingClientError("Token response did not contain an access_token")
        logger.info("Messaging client authorized")

    async def process_message(self, message_bundle):
        if not self.access_token:
            await self.authorize()
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/fhir+json",
            "Accept": "application/fhir+json",
        }
        return await self._request("POST", f"{self.base_url}/$process-message", json=message_bundle, headers=headers)

    async def _get_smart_configuration(self) -> Dict[str, Any]:
        if self._smart_configuration is None:
            url = f"{self.base_url}/.well-known/smart-configuration"
            self._smart_configuration = await self._request("GET", url)
        return self._smart_configuration

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        return await asyncio.to_thread(self._send, method, url, **kwargs)

    def _send(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        logger.debug(f"{method} {url}")
        try:
            response = requests.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code
            try:
                response_data = e.response.json()
            except ValueError:
                response_data = {"errorMessage": e.response.text}
            logger.error(f"HTTP error {status} from {url}")
            raise MessagingClientError(f"Request failed with status code {status}", status=status,
                                       response_data=response_data) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Network error calling {url}: {e}")
            raise MessagingClientError(f"Network error: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}


def get_messaging_client(config: ExtractionConfig) -> AbstractMessagingClient:
    """
    Create a messaging client from the awsConfig block of config.

    Raises:
        ConfigurationError: If config has no awsConfig
    """
    if config is None or not config.aws_config:
        raise ConfigurationError(
            "config file is missing `awsConfig` field, which is required to create a messagingClient instance"
        )
    return HTTPMessagingClient(config.aws_config)


class MessagingClientError(Exception):
    """Exception raised for errors in the messaging client."""

    def __init__(self, message: str, status: Optional[int] = None, response_data: Optional[Any] = None):
        super().__init__(message)
        self.status = status
        self.response_data = response_data
