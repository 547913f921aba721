# tryon/adapters/aiohttp_client_adapter.py
import asyncio
import aiohttp
from typing import Any, Dict, Optional, Tuple

from tryon.core.interfaces.http_client import HttpClientPort
from tryon.core.exceptions import UpstreamHttpError
from tryon.core.models.problem import ProblemResponse
from tryon.core.settings import logger
from tryon.utils import shorten


def _problem(title: str, status: int, detail: str) -> UpstreamHttpError:
    return UpstreamHttpError(
        ProblemResponse(type="about:blank", title=title, status=status, detail=detail)
    )


class AioHttpClientAdapter(HttpClientPort):
    def __init__(self):
        self._session: Optional[aiohttp.ClientSession] = None
        # Per-field defaults used when callers pass no timeout
        self._default_total: float = 10.0
        self._default_sock_read: float = 10.0
        self._default_sock_connect: float = 5.0
        self._default_client_timeout = aiohttp.ClientTimeout(
            total=self._default_total,
            sock_read=self._default_sock_read,
            sock_connect=self._default_sock_connect,
        )

    async def __aenter__(self):
        """Async context manager entry"""
        self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()
        return False

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("HTTP client not initialized. Use 'async with' context manager.")
        return self._session

    def _timeout(self, timeout: float | None) -> aiohttp.ClientTimeout:
        if timeout is None:
            return self._default_client_timeout
        # Keep adapter-level sock_connect but apply provided total
        return aiohttp.ClientTimeout(
            total=timeout,
            sock_read=min(timeout, self._default_sock_read),
            sock_connect=min(timeout, self._default_sock_connect),
        )

    async def get(self, url: str, timeout: float | None = None, headers: Dict[str, str] | None = None) -> Dict[str, Any]:
        session = self._require_session()
        try:
            async with session.get(url, timeout=self._timeout(timeout), headers=headers) as response:
                try:
                    response_data = await response.json()
                except (aiohttp.ContentTypeError, ValueError):
                    response_text = await response.text()
                    if response.status >= 400:
                        response.raise_for_status()
                    logger.error(
                        "Invalid JSON response from remote service. URL: %s, Content: %s",
                        url,
                        response_text[:500],
                    )
                    raise _problem(
                        "Invalid Response Content",
                        502,
                        f"The response from the remote service was not valid JSON: '{response_text[:100]}'",
                    )
                response.raise_for_status()
                return response_data

        except asyncio.TimeoutError:
            logger.error("Timeout when requesting remote service. URL: %s", url)
            raise _problem("Upstream Timeout", 504, "The request to the remote service timed out.")

        except aiohttp.ClientResponseError as client_response_error:
            if client_response_error.status == 401:
                logger.warning(
                    "Authentication failed when requesting remote service. URL: %s, Error: %s",
                    url,
                    str(client_response_error),
                )
                raise _problem("Authentication Failed", 401, "Authentication with the remote service failed.")

            logger.error(
                "HTTP error when requesting remote service. URL: %s, Status: %s, Error: %s",
                url,
                client_response_error.status,
                str(client_response_error),
            )
            raise _problem(
                "Upstream HTTP Error",
                client_response_error.status,
                f"The remote service returned an HTTP error: {client_response_error.status}",
            )

        except aiohttp.ClientError as client_error:
            logger.error(
                "Connection error when requesting remote service. URL: %s, Error: %s",
                url,
                str(client_error),
            )
            raise _problem("Upstream Connection Error", 502, "There was a connection error with the remote service.")

        except UpstreamHttpError:
            raise

        except Exception as unexpected_error:
            logger.error(
                "Unexpected error for remote service. URL: %s, Error: %s",
                url,
                str(unexpected_error),
            )
            raise _problem("Internal Server Error", 500, "An unexpected error occurred while processing the remote response.")

    async def head(self, url: str, timeout: float | None = None) -> int:
        session = self._require_session()
        try:
            async with session.head(url, timeout=self._timeout(timeout), allow_redirects=True) as response:
                return response.status
        except asyncio.TimeoutError:
            logger.debug("[http:head] timeout url=%s", shorten(url))
            raise _problem("Upstream Timeout", 504, "HEAD request timed out.")
        except aiohttp.ClientError as client_error:
            logger.debug("[http:head] connection error url=%s error=%s", shorten(url), client_error)
            raise _problem("Upstream Connection Error", 502, f"HEAD request failed: {client_error}")

    async def get_bytes(self, url: str, timeout: float | None = None) -> Tuple[bytes, Optional[str]]:
        session = self._require_session()
        try:
            async with session.get(url, timeout=self._timeout(timeout)) as response:
                if response.status >= 400:
                    raise _problem(
                        "Upstream HTTP Error",
                        response.status,
                        f"Download failed with HTTP {response.status}",
                    )
                content = await response.read()
                return content, response.headers.get("Content-Type")
        except asyncio.TimeoutError:
            logger.warning("Timeout when downloading from remote service. URL: %s", shorten(url))
            raise _problem("Upstream Timeout", 504, "The download timed out.")
        except aiohttp.ClientError as client_error:
            logger.warning("Connection error when downloading. URL: %s, Error: %s", shorten(url), client_error)
            raise _problem("Upstream Connection Error", 502, "There was a connection error with the remote service.")
        except UpstreamHttpError:
            raise
        except Exception as unexpected_error:
            logger.warning("Unexpected error when downloading. URL: %s, Error: %s", shorten(url), unexpected_error)
            raise _problem("Internal Server Error", 500, "An unexpected error occurred while downloading.")

    async def close(self) -> None:
        """Close the session"""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def post(self, url: str, json: Dict[str, Any] | None, timeout: float | None = None, headers: Dict[str, str] | None = None) -> Dict[str, Any]:
        session = self._require_session()
        try:
            async with session.post(url, json=json, timeout=self._timeout(timeout), headers=headers) as response:
                try:
                    body = await response.json()
                except (aiohttp.ContentTypeError, ValueError):
                    body = await response.text()

                # Status is returned, not raised, so the caller can classify it
                return {
                    "status": response.status,
                    "headers": dict(response.headers),
                    "body": body,
                }

        except asyncio.TimeoutError:
            logger.error("Timeout when POSTing to remote service. URL: %s", url)
            raise _problem("Upstream Timeout", 504, "The request to the remote service timed out.")
        except aiohttp.ClientError as client_err:
            logger.error("Connection error when POSTing to remote service. URL: %s, Error: %s", url, str(client_err))
            raise _problem("Upstream Connection Error", 502, "There was a connection error with the remote service.")
        except Exception as unexpected_post_error:
            logger.error("Unexpected error when POSTing to remote service. URL: %s, Error: %s", url, str(unexpected_post_error))
            raise _problem("Internal Server Error", 500, "An unexpected error occurred while processing your request.")
