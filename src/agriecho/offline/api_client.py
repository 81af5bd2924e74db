"""
API Client - Communication with the AgriEcho server.

This module provides the ApiClient class used by the sync queue to
deliver queued mutations and by the health signal to probe the server.
It handles:
- Session pooling for efficient connection reuse
- JSON request/response handling
- Timeout handling with proper error types
- Validation of the `{success: ...}` response envelope

The sync queue owns retry and backoff, so the transport-level retry
adapter is configured with zero retries by default.

Example:
    from agriecho.offline.api_client import ApiClient

    client = ApiClient('http://localhost:3000')
    result = client.submit('POST', '/api/sos', {'message': 'flood'})
"""

import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import (
    ConnectionError as RequestsConnectionError,
    RequestException,
    Timeout,
)
from urllib3.util.retry import Retry

from agriecho.offline import (
    ApiClientError,
    ApiConnectionError,
    ApiTimeoutError,
    MalformedResponseError,
)


logger = logging.getLogger(__name__)


# Default configuration
DEFAULT_TIMEOUT = 10  # seconds
DEFAULT_MAX_RETRIES = 0
DEFAULT_BACKOFF_FACTOR = 0.5


class ApiClient:
    """
    Client for the AgriEcho remote API.

    Attributes:
        base_url: API base URL
        timeout: Request timeout in seconds
        session: Requests session for connection pooling
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url: API base URL (e.g., 'http://localhost:3000')
            timeout: Request timeout in seconds (default: 10)
            max_retries: Transport-level retries for transient failures (default: 0)
            backoff_factor: Exponential backoff factor for those retries
            session: Optional pre-built session (tests inject one)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        if session is None:
            session = requests.Session()

            retry_strategy = Retry(
                total=max_retries,
                backoff_factor=backoff_factor,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=['HEAD', 'GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'],
                raise_on_status=False,
            )
            adapter = HTTPAdapter(
                max_retries=retry_strategy,
                pool_connections=10,
                pool_maxsize=10,
            )
            session.mount('http://', adapter)
            session.mount('https://', adapter)

        self.session = session
        self.session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'User-Agent': 'AgriEcho/1.0',
        })

        logger.info(f"API client initialized with base URL: {self.base_url}")

    def build_url(self, endpoint: str) -> str:
        """
        Build full URL from endpoint.

        Absolute URLs are returned unchanged.
        """
        if endpoint.startswith(('http://', 'https://')):
            return endpoint
        endpoint = endpoint.lstrip('/')
        return f"{self.base_url}/{endpoint}"

    def _handle_response(self, response: requests.Response, endpoint: str) -> Dict[str, Any]:
        """
        Convert an HTTP response into parsed JSON or a typed exception.

        Raises:
            ApiClientError: For non-success HTTP statuses
            MalformedResponseError: For bodies that are not a JSON object
        """
        if not response.ok:
            logger.warning(f"API request failed for {endpoint}: {response.status_code}")
            raise ApiClientError(
                message=f"Request failed for {endpoint}",
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            data = response.json()
        except ValueError:
            raise MalformedResponseError(
                message=f"Non-JSON response from {endpoint}",
                status_code=response.status_code,
                response_body=response.text,
            )

        if not isinstance(data, dict):
            raise MalformedResponseError(
                message=f"Unexpected response shape from {endpoint}",
                status_code=response.status_code,
                response_body=response.text,
            )
        return data

    def request(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make a JSON request.

        Args:
            method: HTTP method
            endpoint: API endpoint path or absolute URL
            data: JSON request body
            params: Optional query parameters

        Returns:
            Parsed JSON response

        Raises:
            ApiConnectionError: When connection fails
            ApiTimeoutError: When request times out
            ApiClientError: For other request errors
        """
        url = self.build_url(endpoint)

        try:
            response = self.session.request(
                method.upper(),
                url,
                json=data,
                params=params,
                timeout=self.timeout,
            )
            return self._handle_response(response, endpoint)

        except Timeout as e:
            logger.warning(f"API request timeout for {endpoint}: {e}")
            raise ApiTimeoutError(
                message=f"Request timed out for {endpoint}",
                details={'timeout': self.timeout},
            )

        except RequestsConnectionError as e:
            logger.warning(f"API connection failed for {endpoint}: {e}")
            raise ApiConnectionError(
                message=f"Connection failed for {endpoint}",
                details={'error': str(e)},
            )

        except RequestException as e:
            logger.warning(f"API request error for {endpoint}: {e}")
            raise ApiClientError(
                message=f"Request error for {endpoint}",
                details={'error': str(e)},
            )

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Make a GET request. See request()."""
        return self.request('GET', endpoint, params=params)

    def post(self, endpoint: str, data: Any = None) -> Dict[str, Any]:
        """Make a POST request. See request()."""
        return self.request('POST', endpoint, data=data)

    def submit(self, method: str, endpoint: str, payload: Any) -> Dict[str, Any]:
        """
        Deliver a mutation and require a positive acknowledgement.

        The server must answer with a JSON object whose `success` field
        is true. A missing field is a malformed response; `success: false`
        is a rejection. Both raise so the caller counts a failed attempt.

        Returns:
            Parsed JSON response
        """
        result = self.request(method, endpoint, data=payload)

        if 'success' not in result:
            raise MalformedResponseError(
                message=f"Response from {endpoint} has no success field",
                details={'response': result},
            )
        if not result['success']:
            raise ApiClientError(
                message=result.get('error') or f"Server rejected submission to {endpoint}",
                details={'response': result},
            )
        return result

    def health(self) -> bool:
        """
        Check whether the server answers its health endpoint.

        Returns:
            True when /api/health responds below 500
        """
        try:
            response = self.session.get(self.build_url('/api/health'), timeout=self.timeout)
            return response.status_code < 500
        except RequestException:
            return False

    def close(self) -> None:
        """Close the underlying session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return f"<ApiClient base_url={self.base_url}>"
