"""
Row expansion -- pure denormalization of items into output records.

Contract:
    ``expand_item(item, outcome)`` yields ``max(1, k)`` records for an item
    with k permissions.  A failed permission fetch yields exactly one record
    with empty permission fields and ``permission_fetch_status=FAILED``.

Architecture: audit_batch/domain.  ZERO I/O.

Invariants enforced:
    DA-4 -- rows_for(item) == max(1, permission_count(item)); records of
            one item differ only in permission fields; permission order
            is the order the data source returned.
"""

from __future__ import annotations

from typing import Any

from audit_batch.domain.types import (
    DriveItem,
    FetchKind,
    OutputRecord,
    PermissionFetchStatus,
    PermissionOutcome,
)

# Column contract external tooling filters on.  Order is durable.
OUTPUT_COLUMNS: tuple[str, ...] = (
    "File Name",
    "File ID",
    "Owner",
    "Type",
    "MIME Type",
    "Created Date",
    "Modified Date",
    "Size (bytes)",
    "URL",
    "Permissions Count",
    "Permission Type",
    "Permission Role",
    "Permission Email",
    "Permission Domain",
    "Permission Display Name",
)

# Diagnostic column appended after the durable contract.
DIAGNOSTIC_COLUMNS: tuple[str, ...] = ("Permission Fetch Status",)

ALL_COLUMNS: tuple[str, ...] = OUTPUT_COLUMNS + DIAGNOSTIC_COLUMNS

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
_GOOGLE_APPS_PREFIX = "application/vnd.google-apps."


def classify_item_type(mime_type: str) -> str:
    """Map a MIME type to the human-readable type classification."""
    if mime_type == FOLDER_MIME_TYPE:
        return "Folder"
    if mime_type.startswith(_GOOGLE_APPS_PREFIX):
        suffix = mime_type[len(_GOOGLE_APPS_PREFIX):].replace("-", " ", 1)
        return f"Google {suffix}"
    if mime_type.startswith("image/"):
        return "Image"
    if mime_type.startswith("video/"):
        return "Video"
    if mime_type.startswith("audio/"):
        return "Audio"
    if "pdf" in mime_type:
        return "PDF"
    if "document" in mime_type or "text" in mime_type:
        return "Document"
    if "spreadsheet" in mime_type:
        return "Spreadsheet"
    if "presentation" in mime_type:
        return "Presentation"
    return "File"


def expand_item(
    item: DriveItem, outcome: PermissionOutcome,
) -> tuple[OutputRecord, ...]:
    """Expand one item and its permission outcome into output records."""
    base: dict[str, Any] = {
        "file_name": item.name,
        "file_id": item.item_id,
        "owner": item.owner_email or "Unknown",
        "type": classify_item_type(item.mime_type),
        "mime_type": item.mime_type,
        "created_time": item.created_time,
        "modified_time": item.modified_time,
        "size": item.size,
        "url": item.web_view_link,
    }

    if outcome.kind == FetchKind.ERROR:
        return (
            OutputRecord(
                **base,
                permissions_count=0,
                permission_fetch_status=PermissionFetchStatus.FAILED,
            ),
        )

    permissions = outcome.permissions
    if not permissions:
        return (OutputRecord(**base, permissions_count=0),)

    count = len(permissions)
    return tuple(
        OutputRecord(
            **base,
            permissions_count=count,
            permission_type=perm.type,
            permission_role=perm.role,
            permission_email=perm.email_address,
            permission_domain=perm.domain,
            permission_display_name=perm.display_name,
        )
        for perm in permissions
    )


def record_to_row(record: OutputRecord) -> tuple[Any, ...]:
    """Render a record in ``ALL_COLUMNS`` order (timestamps as ISO strings)."""
    return (
        record.file_name,
        record.file_id,
        record.owner,
        record.type,
        record.mime_type,
        record.created_time.isoformat() if record.created_time else "",
        record.modified_time.isoformat() if record.modified_time else "",
        record.size if record.size is not None else "",
        record.url,
        record.permissions_count,
        record.permission_type,
        record.permission_role,
        record.permission_email,
        record.permission_domain,
        record.permission_display_name,
        record.permission_fetch_status.value,
    )
