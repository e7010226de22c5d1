"""Async HTTP client for the bookmark resource API."""
import logging
from types import TracebackType
from typing import Any, Self

import httpx

from schemas.bookmark import BookmarkResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class ApiError(Exception):
    """Error response from the bookmark API."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class ApiValidationError(ApiError):
    """400 - the request must be corrected before retrying."""


class ApiForbiddenError(ApiError):
    """403 - the bookmark belongs to someone else."""


class ApiNotFoundError(ApiError):
    """404 - the bookmark does not exist."""


class ApiConflictError(ApiError):
    """409 - the client-generated id is taken."""


class ApiServerError(ApiError):
    """5xx or transport failure - safe to retry."""


_ERRORS_BY_STATUS: dict[int, type[ApiError]] = {
    400: ApiValidationError,
    403: ApiForbiddenError,
    404: ApiNotFoundError,
    409: ApiConflictError,
}


class BookmarksApiClient:
    """Thin wrapper over the /bookmarks/ endpoints."""

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._http = http_client

    @classmethod
    def from_base_url(cls, base_url: str, timeout: float = DEFAULT_TIMEOUT) -> Self:
        """Create a client with its own connection pool."""
        return cls(httpx.AsyncClient(base_url=base_url, timeout=timeout))

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def list_bookmarks(
        self, user_id: str, search: str | None = None,
    ) -> list[BookmarkResponse]:
        """Fetch the owner's bookmarks, newest first."""
        params = {"userId": user_id}
        if search:
            params["search"] = search
        payload = await self._request("GET", params=params)
        return [BookmarkResponse.model_validate(item) for item in payload]

    async def create_bookmark(
        self,
        user_id: str,
        title: str,
        url: str,
        bookmark_id: str | None = None,
    ) -> BookmarkResponse:
        """Create a bookmark; bookmark_id makes the request safe to replay."""
        body: dict[str, Any] = {"title": title, "url": url, "userId": user_id}
        if bookmark_id is not None:
            body["id"] = bookmark_id
        return BookmarkResponse.model_validate(await self._request("POST", json=body))

    async def update_bookmark(
        self, user_id: str, bookmark_id: str, title: str, url: str,
    ) -> BookmarkResponse:
        """Replace a bookmark's title and url."""
        body = {"id": bookmark_id, "title": title, "url": url, "userId": user_id}
        return BookmarkResponse.model_validate(await self._request("PUT", json=body))

    async def delete_bookmark(self, user_id: str, bookmark_id: str) -> str:
        """Delete a bookmark, returning the server's confirmation message."""
        payload = await self._request("DELETE", params={"id": bookmark_id, "userId": user_id})
        return payload["message"]

    async def _request(
        self,
        method: str,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._http.request(method, "/bookmarks/", params=params, json=json)
        except httpx.HTTPError as e:
            logger.warning("bookmark_api_unreachable", extra={"method": method, "error": str(e)})
            raise ApiServerError(0, "Could not reach the server") from e

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_success:
            return payload

        message = payload.get("error") if isinstance(payload, dict) else None
        error_cls = _ERRORS_BY_STATUS.get(response.status_code)
        if error_cls is None:
            error_cls = ApiServerError if response.status_code >= 500 else ApiError
        raise error_cls(response.status_code, message or response.reason_phrase or "Request failed")
