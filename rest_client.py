"""
rest_client.py – Shared ``requests`` plumbing for the Jira and BrowserStack
clients.

Every HTTP failure is classified here, once, into a tagged
:class:`errors.ServiceError`.  Messages keep the fragments operators and
the retry layer recognise: "Authentication failed", "not found",
"Rate limit exceeded (429)", the numeric status, "Network", "timeout".
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from errors import ErrorKind, ServiceError, kind_for_status

logger = logging.getLogger("sprint-testgen")

_STATUS_TEXT = {
    ErrorKind.AUTH: "Authentication failed",
    ErrorKind.RATE_LIMIT: "Rate limit exceeded",
    ErrorKind.CONFLICT: "Duplicate resource (conflict)",
}


class RestClient:
    """Thin authenticated JSON session around a base URL."""

    not_found_text = "Resource not found"

    def __init__(
        self,
        base_url: str,
        username: str,
        secret: str,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.auth = (username, secret)
        self._session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )

    def _url(self, path: str) -> str:
        return f"{self._base}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, context: str, **kwargs: Any) -> Any:
        """Issue a request and return the decoded JSON body (or ``None``)."""
        kwargs.setdefault("timeout", self._timeout)
        try:
            resp = self._session.request(method, self._url(path), **kwargs)
        except requests.Timeout as exc:
            raise ServiceError(f"{context}: Request timeout ({exc})", ErrorKind.TIMEOUT) from exc
        except requests.ConnectionError as exc:
            raise ServiceError(
                f"{context}: Network error ECONNREFUSED/ECONNRESET ({exc})", ErrorKind.NETWORK
            ) from exc
        except requests.RequestException as exc:
            raise ServiceError(f"{context}: {exc}") from exc

        if resp.status_code >= 400:
            raise self._http_error(resp, context)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    def _http_error(self, resp: requests.Response, context: str) -> ServiceError:
        status = resp.status_code
        kind = kind_for_status(status)
        if kind is ErrorKind.NOT_FOUND:
            text = self.not_found_text
        elif kind in _STATUS_TEXT:
            text = _STATUS_TEXT[kind]
        else:
            text = _detail(resp)
        logger.debug("%s → HTTP %s: %s", context, status, resp.text[:500])
        return ServiceError(f"{context}: {text} ({status})", kind, status_code=status)


def _detail(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.reason or resp.text[:200] or "HTTP error"
    if isinstance(data, dict):
        if data.get("errorMessages"):
            return str(data["errorMessages"][0])
        if data.get("message"):
            return str(data["message"])
        if data.get("errors"):
            return f"Bad Request - {data['errors']}"
    return str(data)[:200]
