from __future__ import annotations

import logging
from typing import Any, Optional, Union

import httpx

from ..core.logging_utils import log_event
from .constants import DEFAULT_API_URL, DEFAULT_REQUEST_TIMEOUT_SECONDS
from .errors import ChatAPIError, ChatPermanentError, ChatTransientError

logger = logging.getLogger(__name__)


def extract_error_detail(response: httpx.Response) -> Optional[str]:
    """Pull a readable message out of a backend error body."""
    try:
        body = response.json()
    except ValueError:
        text = (response.text or "").strip()
        return text[:200] or None
    if isinstance(body, dict):
        for key in ("detail", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None
    if isinstance(body, str) and body.strip():
        return body.strip()
    return None


class FindMyWorkerRestClient:
    def __init__(
        self,
        *,
        token: Optional[str],
        base_url: str = DEFAULT_API_URL,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        locale: str = "es",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json", "Accept-Language": locale}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if not base_url.endswith("/"):
            base_url = f"{base_url}/"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            headers=headers,
            transport=transport,
        )
        self._has_token = bool(token)

    @property
    def has_token(self) -> bool:
        return self._has_token

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "FindMyWorkerRestClient":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    async def _request(self, method: str, path: str) -> Any:
        # Paths are relative so the base URL's own path prefix (``/api/``) is kept.
        relative = path.lstrip("/")
        try:
            response = await self._client.request(method, relative)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            detail = extract_error_detail(exc.response)
            message = (
                f"FindMyWorker API request failed for {method} {path}: "
                f"status={status_code} detail={detail!r}"
            )
            log_event(
                logger,
                logging.WARNING,
                "chat.api.request_failed",
                method=method,
                path=path,
                status_code=status_code,
            )
            if status_code in {401, 403}:
                raise ChatPermanentError(
                    message, status_code=status_code, user_message=detail
                ) from exc
            if 500 <= status_code < 600:
                raise ChatTransientError(
                    message, status_code=status_code, user_message=detail
                ) from exc
            raise ChatAPIError(
                message, status_code=status_code, user_message=detail
            ) from exc
        except httpx.TimeoutException as exc:
            raise ChatTransientError(
                f"FindMyWorker API timeout for {method} {path}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ChatTransientError(
                f"FindMyWorker API network error for {method} {path}: {exc}"
            ) from exc

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ChatAPIError(
                f"FindMyWorker API returned non-JSON success response for {method} {path}",
                status_code=response.status_code,
            ) from exc

    async def get_order_messages(self, order_id: Union[int, str]) -> Any:
        return await self._request("GET", f"/orders/{order_id}/messages/")

    async def get_order_detail(self, order_id: Union[int, str]) -> dict[str, Any]:
        payload = await self._request("GET", f"/orders/{order_id}/")
        return payload if isinstance(payload, dict) else {}
