# tryon/core/interfaces/http_client.py
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple


class HttpClientPort(ABC):
    @abstractmethod
    async def __aenter__(self) -> "HttpClientPort":
        """Async context manager entry method"""
        pass

    @abstractmethod
    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit method"""
        pass

    @abstractmethod
    async def get(self, url: str, timeout: float | None = None, headers: Dict[str, str] | None = None) -> Dict[str, Any]:
        """Make a GET request and return the parsed JSON response.

        Non-2xx responses and transport failures raise UpstreamHttpError.
        """
        pass

    @abstractmethod
    async def head(self, url: str, timeout: float | None = None) -> int:
        """Make a HEAD request and return the status code.

        Redirects are followed. Transport failures raise UpstreamHttpError;
        any HTTP status (including 4xx/5xx) is returned, not raised.
        """
        pass

    @abstractmethod
    async def get_bytes(self, url: str, timeout: float | None = None) -> Tuple[bytes, Optional[str]]:
        """Download a body. Returns (content, content_type); non-2xx raises UpstreamHttpError."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the HTTP client session"""
        pass

    @abstractmethod
    async def post(self, url: str, json: Dict[str, Any] | None, timeout: float | None = None, headers: Dict[str, str] | None = None) -> Dict[str, Any]:
        """Make a POST request. Returns a dict with keys: 'status' (int),
        'headers' (dict) and 'body' (parsed JSON or raw text).

        The status is not raised so callers can classify provider answers.
        """
        pass
