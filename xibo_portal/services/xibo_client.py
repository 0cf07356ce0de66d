"""
Xibo Client - Communication with the Xibo CMS API.

This module provides the XiboClient class for all communication with the
upstream Xibo CMS. It handles:
- Session pooling for efficient connection reuse
- Application tokens via the OAuth client-credentials grant, cached
  until shortly before they expire
- Per-request user tokens relayed from the portal's own JWT
- Form-encoded PUT bodies as expected by the Xibo API
- Timeout handling with proper error types
- Automatic retry for transient failures on idempotent requests

Example:
    from xibo_portal.services.xibo_client import XiboClient

    client = XiboClient(
        'https://cms.example.com/api',
        client_id='abc',
        client_secret='secret',
    )

    # Application token
    about = client.get('/about')

    # User token
    layouts = client.get('/layout', params={'start': 0}, token=user_token)
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import (
    ConnectionError as RequestsConnectionError,
    RequestException,
    Timeout,
)
from urllib3.util.retry import Retry

from xibo_portal.services import (
    XiboAuthenticationError,
    XiboClientError,
    XiboConnectionError,
    XiboTimeoutError,
)


logger = logging.getLogger(__name__)


# Default configuration
DEFAULT_TIMEOUT = 30  # seconds
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 0.5

TOKEN_ENDPOINT = '/authorize/access_token'
DEFAULT_TOKEN_LIFETIME = 3600  # seconds
TOKEN_REFRESH_RATIO = 0.9


def encode_form(data: Optional[Dict[str, Any]]) -> List[Tuple[str, str]]:
    """
    Flatten a payload into form fields.

    Lists are expanded PHP-style (``mediaIds[]=1&mediaIds[]=2``), booleans
    become 1/0 and None values are omitted.

    Args:
        data: Payload dictionary

    Returns:
        List of (name, value) pairs in payload order
    """
    fields: List[Tuple[str, str]] = []
    for key, value in (data or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            for item in value:
                fields.append((f"{key}[]", str(item)))
        elif isinstance(value, bool):
            fields.append((key, '1' if value else '0'))
        else:
            fields.append((key, str(value)))
    return fields


class XiboClient:
    """
    Client for communicating with the Xibo CMS API.

    Attributes:
        base_url: Xibo API base URL (including the /api suffix)
        timeout: Request timeout in seconds
        session: Requests session for connection pooling
    """

    def __init__(
        self,
        base_url: str,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    ):
        """
        Initialize the Xibo client.

        Args:
            base_url: Xibo API base URL (e.g., 'https://cms.example.com/api')
            client_id: OAuth client id for application tokens
            client_secret: OAuth client secret for application tokens
            timeout: Request timeout in seconds (default: 30)
            max_retries: Maximum retry attempts for transient failures (default: 3)
            backoff_factor: Exponential backoff factor for retries (default: 0.5)
        """
        self.base_url = (base_url or '').rstrip('/')
        self.timeout = timeout
        self._client_id = client_id
        self._client_secret = client_secret

        self._app_token: Optional[str] = None
        self._app_token_expires_at = 0.0
        self._token_lock = threading.Lock()

        # Create session with connection pooling
        self.session = requests.Session()

        # Only reads are retried; checkout and publish must not repeat
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=['HEAD', 'GET', 'OPTIONS'],
        )

        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=10,
            pool_maxsize=10,
        )
        self.session.mount('http://', adapter)
        self.session.mount('https://', adapter)

        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': 'XiboPortal/1.0',
        })

        logger.info(f"Xibo client initialized with base URL: {self.base_url}")

    @classmethod
    def from_config(cls, config) -> 'XiboClient':
        """Create a client from application config values."""
        return cls(
            base_url=config.get('XIBO_API_URL', ''),
            client_id=config.get('XIBO_CLIENT_ID'),
            client_secret=config.get('XIBO_CLIENT_SECRET'),
            timeout=config.get('XIBO_REQUEST_TIMEOUT', DEFAULT_TIMEOUT),
            max_retries=config.get('XIBO_MAX_RETRIES', DEFAULT_MAX_RETRIES),
        )

    # -------------------------------------------------------------------------
    # Application Token
    # -------------------------------------------------------------------------

    def get_app_token(self) -> str:
        """
        Get the application access token, requesting a new one if needed.

        Returns:
            Bearer token string

        Raises:
            XiboAuthenticationError: When client credentials are missing or rejected
            XiboConnectionError: When the CMS cannot be reached
            XiboTimeoutError: When the token request times out
        """
        with self._token_lock:
            if self._app_token and time.monotonic() < self._app_token_expires_at:
                return self._app_token

            if not self._client_id or not self._client_secret:
                raise XiboAuthenticationError(
                    message="Xibo client credentials are not configured",
                )

            payload = self._request_app_token()
            token = payload.get('access_token')
            if not token:
                raise XiboAuthenticationError(
                    message="Token response did not contain an access token",
                    response_body=str(payload),
                )

            lifetime = payload.get('expires_in') or DEFAULT_TOKEN_LIFETIME
            self._app_token = token
            self._app_token_expires_at = time.monotonic() + float(lifetime) * TOKEN_REFRESH_RATIO
            logger.debug(f"Xibo application token refreshed (expires in {lifetime}s)")
            return token

    def clear_app_token(self) -> None:
        """Forget the cached application token."""
        with self._token_lock:
            self._app_token = None
            self._app_token_expires_at = 0.0
        logger.debug("Xibo application token cleared")

    def _request_app_token(self) -> Dict[str, Any]:
        url = self._build_url(TOKEN_ENDPOINT)
        form = {
            'client_id': self._client_id,
            'client_secret': self._client_secret,
            'grant_type': 'client_credentials',
        }

        try:
            response = self.session.post(url, data=form, timeout=self.timeout)
        except Timeout as e:
            logger.error(f"Xibo token request timeout: {e}")
            raise XiboTimeoutError(
                message="Token request timed out",
                details={'timeout': self.timeout},
            )
        except RequestsConnectionError as e:
            logger.error(f"Xibo connection failed for token request: {e}")
            raise XiboConnectionError(
                message=f"Cannot connect to Xibo API server ({self.base_url})",
                details={'error': str(e)},
            )
        except RequestException as e:
            logger.error(f"Xibo token request error: {e}")
            raise XiboClientError(
                message="Token request error",
                details={'error': str(e)},
            )

        if not response.ok:
            logger.error(f"Xibo authentication failed: {response.status_code}")
            raise XiboAuthenticationError(
                message="Xibo API authentication failed, check XIBO_CLIENT_ID and XIBO_CLIENT_SECRET",
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            return response.json()
        except ValueError:
            raise XiboAuthenticationError(
                message="Token response was not JSON",
                status_code=response.status_code,
                response_body=response.text,
            )

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def _build_url(self, endpoint: str) -> str:
        """
        Build full URL from endpoint.

        Args:
            endpoint: API endpoint path (e.g., '/layout')

        Returns:
            Full URL string
        """
        endpoint = endpoint.lstrip('/')
        return f"{self.base_url}/{endpoint}"

    def _handle_response(self, response: requests.Response, endpoint: str) -> Any:
        """
        Handle HTTP response and convert errors to exceptions.

        Args:
            response: HTTP response object
            endpoint: Original endpoint for error context

        Returns:
            Parsed JSON response data

        Raises:
            XiboAuthenticationError: When authentication fails (401/403)
            XiboClientError: For other HTTP errors
        """
        if response.status_code in (401, 403):
            logger.error(f"Xibo authentication failed for {endpoint}: {response.status_code}")
            raise XiboAuthenticationError(
                message=f"Authentication failed for {endpoint}",
                status_code=response.status_code,
                response_body=response.text,
            )

        if not response.ok:
            logger.error(f"Xibo request failed for {endpoint}: {response.status_code}")
            raise XiboClientError(
                message=f"Request failed for {endpoint}",
                status_code=response.status_code,
                response_body=response.text,
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError:
            # Response was successful but not JSON
            return {'raw': response.text}

    def _send(
        self,
        method: str,
        endpoint: str,
        token: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        stream: bool = False,
    ) -> requests.Response:
        url = self._build_url(endpoint)
        headers = {'Authorization': f'Bearer {token}'}
        kwargs: Dict[str, Any] = {
            'params': params,
            'headers': headers,
            'timeout': self.timeout,
            'stream': stream,
        }

        if data is not None:
            if method == 'PUT':
                kwargs['data'] = encode_form(data)
            else:
                kwargs['json'] = data

        try:
            return self.session.request(method, url, **kwargs)

        except Timeout as e:
            logger.error(f"Xibo request timeout for {endpoint}: {e}")
            raise XiboTimeoutError(
                message=f"Request timed out for {endpoint}",
                details={'timeout': self.timeout},
            )

        except RequestsConnectionError as e:
            logger.error(f"Xibo connection failed for {endpoint}: {e}")
            raise XiboConnectionError(
                message=f"Connection failed for {endpoint}",
                details={'error': str(e)},
            )

        except RequestException as e:
            logger.error(f"Xibo request error for {endpoint}: {e}")
            raise XiboClientError(
                message=f"Request error for {endpoint}",
                details={'error': str(e)},
            )

    def _perform(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        stream: bool = False,
    ) -> requests.Response:
        """
        Send a request, retrying once with a fresh application token on 401.

        User tokens are never refreshed here; a 401 for a user token is
        reported to the caller.
        """
        use_app_token = token is None
        response = self._send(method, endpoint, token or self.get_app_token(), params, data, stream)

        if response.status_code == 401 and use_app_token:
            logger.info(f"Xibo application token rejected for {endpoint}, refreshing")
            response.close()
            self.clear_app_token()
            response = self._send(method, endpoint, self.get_app_token(), params, data, stream)

        return response

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> Any:
        """
        Make an authenticated request to the Xibo API.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            params: Optional query parameters
            data: Optional body (form-encoded for PUT, JSON otherwise)
            token: User access token; the application token is used if omitted

        Returns:
            Parsed JSON response

        Raises:
            XiboConnectionError: When connection fails
            XiboTimeoutError: When request times out
            XiboAuthenticationError: When authentication fails
            XiboClientError: For other request errors
        """
        method = method.upper()
        response = self._perform(method, endpoint, params, data, token)
        return self._handle_response(response, endpoint)

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None, token: Optional[str] = None) -> Any:
        """Make authenticated GET request."""
        return self.request('GET', endpoint, params=params, token=token)

    def post(self, endpoint: str, data: Optional[Dict[str, Any]] = None, token: Optional[str] = None) -> Any:
        """Make authenticated POST request with a JSON body."""
        return self.request('POST', endpoint, data=data, token=token)

    def put(self, endpoint: str, data: Optional[Dict[str, Any]] = None, token: Optional[str] = None) -> Any:
        """Make authenticated PUT request with a form-encoded body."""
        return self.request('PUT', endpoint, data=data or {}, token=token)

    def get_text(self, endpoint: str, params: Optional[Dict[str, Any]] = None, token: Optional[str] = None) -> str:
        """
        Fetch a text resource such as rendered widget HTML.

        Raises:
            XiboClientError: For non-2xx responses and transport errors
        """
        response = self._perform('GET', endpoint, params=params, token=token)
        self._raise_for_status(response, endpoint)
        return response.text

    def get_binary(self, endpoint: str, params: Optional[Dict[str, Any]] = None,
                   token: Optional[str] = None) -> Tuple[bytes, str]:
        """
        Fetch a binary resource such as a layout thumbnail.

        Returns:
            (content, content_type) tuple
        """
        response = self._perform('GET', endpoint, params=params, token=token)
        self._raise_for_status(response, endpoint)
        return response.content, response.headers.get('Content-Type', 'application/octet-stream')

    def _raise_for_status(self, response: requests.Response, endpoint: str) -> None:
        if response.status_code in (401, 403):
            raise XiboAuthenticationError(
                message=f"Authentication failed for {endpoint}",
                status_code=response.status_code,
                response_body=response.text,
            )
        if not response.ok:
            logger.error(f"Xibo request failed for {endpoint}: {response.status_code}")
            raise XiboClientError(
                message=f"Request failed for {endpoint}",
                status_code=response.status_code,
                response_body=response.text,
            )

    def close(self) -> None:
        """Close the session and release resources."""
        self.session.close()
        logger.info("Xibo client session closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close session."""
        self.close()
        return False
