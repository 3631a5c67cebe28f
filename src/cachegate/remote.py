"""HTTP implementation of the remote-call contract.

:class:`HttpRemoteCall` posts an :class:`~cachegate.models.AnalysisRequest`
as JSON to an analysis endpoint with :class:`httpx.AsyncClient` and
returns the decoded JSON body.  It does not retry or enforce its own
deadline beyond the transport timeout; that is the coordinator's job.

Failures are mapped onto the retry classification used by
:class:`~cachegate.resilience.RetryExecutor`:

* network errors, 408, 429, and 5xx -> :class:`~cachegate.exceptions.RemoteCallError`
  (retried)
* any other 4xx -> :class:`~cachegate.exceptions.TerminalRemoteError`
  (returned to the caller without retrying)
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from cachegate.exceptions import RemoteCallError, TerminalRemoteError
from cachegate.models import AnalysisRequest

_RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


class HttpRemoteCall:
    """Callable remote call backed by :mod:`httpx`.

    Args:
        url: Endpoint receiving ``POST`` requests.
        headers: Extra headers sent with every request (e.g. API keys).
        timeout: Transport timeout in seconds.
        transport: Optional custom transport; tests pass
            :class:`httpx.MockTransport`.

    Example::

        call = HttpRemoteCall("https://analysis.example.com/v1/analyze",
                              headers={"x-api-key": key})
        coordinator = RequestCoordinator.from_config(CoreConfig(), call)
    """

    def __init__(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._timeout = timeout
        self._transport = transport

    async def __call__(self, request: AnalysisRequest) -> Any:
        """Send *request* and return the decoded JSON response body.

        Raises:
            RemoteCallError: On network failures, 408, 429, 5xx, or an
                undecodable body.
            TerminalRemoteError: On any other 4xx status.
        """
        payload = {
            "namespace": request.namespace,
            "content": request.content,
            "context": request.context,
            **request.options,
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(self._url, json=payload, headers=self._headers)
            except httpx.HTTPError as exc:
                raise RemoteCallError(f"Connection failed: {exc}") from exc

        self._raise_for_status(response)
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteCallError("Failed to parse analysis response as JSON") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        try:
            detail = response.json()
            if isinstance(detail, dict):
                error = detail.get("error")
                if isinstance(error, dict):
                    error = error.get("message")
                msg = error or detail.get("message") or detail.get("detail") or ""
            else:
                msg = str(detail)
        except ValueError:
            msg = response.text[:200] if response.text else ""

        full_msg = f"HTTP {status}: {msg}" if msg else f"API error: {status}"

        if status >= 500 or status in _RETRYABLE_CLIENT_STATUSES:
            raise RemoteCallError(full_msg)
        raise TerminalRemoteError(full_msg)
