"""
DriveClient -- Drive v3 REST implementation of ``DataSourceClient``.

Contract:
    ``list_page()`` lists one page of files; ``list_permissions()`` lists
    every permission of one file, following ``nextPageToken``.  Both return
    tagged outcomes: HTTP status errors, transport errors and malformed
    payloads become ``FetchKind.ERROR`` with a description, never raise.

Architecture: audit_batch/services.  The only module that talks HTTP.

Invariants enforced:
    DA-7 -- expected failures are values, not exceptions.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from audit_kernel.logging_config import get_logger

from audit_batch.domain.types import (
    DriveItem,
    ItemPage,
    PageOutcome,
    PermissionEntry,
    PermissionOutcome,
)

if TYPE_CHECKING:
    from audit_config.schema import DataSourceConfig

logger = get_logger("batch.drive")

DEFAULT_BASE_URL = "https://www.googleapis.com"

FILE_FIELDS = (
    "nextPageToken, files(id, name, mimeType, owners, createdTime, "
    "modifiedTime, size, webViewLink)"
)
PERMISSION_FIELDS = (
    "nextPageToken, permissions(id, type, role, emailAddress, domain, displayName)"
)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _parse_item(payload: dict[str, Any]) -> DriveItem:
    owners = payload.get("owners") or []
    owner_email = owners[0].get("emailAddress") if owners else None
    size = payload.get("size")
    return DriveItem(
        item_id=payload["id"],
        name=payload.get("name", ""),
        mime_type=payload.get("mimeType", ""),
        owner_email=owner_email or "Unknown",
        created_time=_parse_timestamp(payload.get("createdTime")),
        modified_time=_parse_timestamp(payload.get("modifiedTime")),
        size=int(size) if size is not None else None,
        web_view_link=payload.get("webViewLink", ""),
    )


def _parse_permission(payload: dict[str, Any]) -> PermissionEntry:
    return PermissionEntry(
        permission_id=payload.get("id", ""),
        type=payload.get("type", ""),
        role=payload.get("role", ""),
        email_address=payload.get("emailAddress", ""),
        domain=payload.get("domain", ""),
        display_name=payload.get("displayName", ""),
    )


class DriveClient:
    """Drive v3 client over a shared ``httpx.Client``.

    Non-goals:
        - No OAuth flow: the bearer token is supplied by the caller.
        - No retries: a failed page aborts the job by design of the engine.
    """

    def __init__(
        self,
        access_token: str | None = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0,
        client: httpx.Client | None = None,
    ):
        if client is None:
            headers = {"Accept": "application/json"}
            if access_token:
                headers["Authorization"] = f"Bearer {access_token}"
            client = httpx.Client(
                base_url=base_url,
                headers=headers,
                timeout=httpx.Timeout(timeout_seconds),
            )
        self._client = client

    @classmethod
    def from_config(
        cls, config: DataSourceConfig, access_token: str | None,
    ) -> DriveClient:
        return cls(
            access_token,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> DriveClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # DataSourceClient
    # -------------------------------------------------------------------------

    def list_page(self, cursor: str | None, page_size: int) -> PageOutcome:
        params: dict[str, Any] = {
            "pageSize": page_size,
            "fields": FILE_FIELDS,
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        }
        if cursor:
            params["pageToken"] = cursor

        try:
            payload = self._get_json("/drive/v3/files", params)
            items = tuple(_parse_item(f) for f in payload.get("files") or [])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            reason = _describe(exc)
            logger.warning(
                "drive_page_fetch_failed",
                extra={"cursor": cursor, "reason": reason},
            )
            return PageOutcome.failed(reason)

        next_cursor = payload.get("nextPageToken") or None
        logger.debug(
            "drive_page_fetched",
            extra={"item_count": len(items), "has_next": next_cursor is not None},
        )
        return PageOutcome.of(ItemPage(items=items, next_cursor=next_cursor))

    def list_permissions(self, item_id: str) -> PermissionOutcome:
        permissions: list[PermissionEntry] = []
        page_token: str | None = None
        try:
            while True:
                params: dict[str, Any] = {
                    "fields": PERMISSION_FIELDS,
                    "supportsAllDrives": "true",
                }
                if page_token:
                    params["pageToken"] = page_token
                payload = self._get_json(f"/drive/v3/files/{item_id}/permissions", params)
                permissions.extend(
                    _parse_permission(p) for p in payload.get("permissions") or []
                )
                page_token = payload.get("nextPageToken") or None
                if page_token is None:
                    break
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            reason = _describe(exc)
            logger.warning(
                "drive_permission_fetch_failed",
                extra={"item_id": item_id, "reason": reason},
            )
            return PermissionOutcome.failed(reason)

        return PermissionOutcome.of(tuple(permissions))

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        response = self._client.get(path, params=params)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        return payload


def _describe(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code} from {exc.request.url.path}"
    return f"{type(exc).__name__}: {exc}"
