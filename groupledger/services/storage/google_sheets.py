"""
Google Sheets Storage Implementation

Groups, ledger entries and audit events each live in their own worksheet,
one row per record, so members can read the raw ledger in the sheet.
Nested values (members, payer reference, splits) are stored as JSON in a
single cell. Rows are filtered in Python; fine for household-sized groups.

Sheets has no transactions. A member id rewrite sends all entry rows in
one batch update and writes the group row last, so a retried rewrite
still finds the old id.
"""

import json
from datetime import datetime
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from groupledger.config import get_settings
from groupledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from groupledger.models.ledger import Group, LedgerEntry, Member, MemberId
from groupledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)

logger = structlog.get_logger("groupledger.storage")


# Groups worksheet header
GROUP_COLUMNS = [
    "id",
    "name",
    "created_by_kind",
    "created_by",
    "type",
    "currency",
    "created_at",
    "members_json",
]

# Entries worksheet header
ENTRY_COLUMNS = [
    "id",
    "group_id",
    "created_at",
    "occurred_at",
    "description",
    "category",
    "amount",
    "payer_json",
    "payer_name_fallback",
    "splits_json",
    "is_deleted",
    "deleted_at",
    "deleted_by",
    "idempotency_key",
]

# AuditLog worksheet header
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "actor_id",
    "is_user_action",
]

_write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
    reraise=True,
)


def _safe_get(row: list, index: int, default: str = "") -> str:
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Authorized gspread handle on the ledger spreadsheet.

    Connects on first use and creates missing worksheets with their header row.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """Authorize gspread with the service account key (retried)."""
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """The spreadsheet named by GOOGLE_SHEETS_SPREADSHEET_ID."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _worksheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_groups_sheet(self) -> gspread.Worksheet:
        """Groups worksheet, created on first use."""
        return self._worksheet(self._settings.groups_sheet_name, GROUP_COLUMNS, 500)

    def get_entries_sheet(self) -> gspread.Worksheet:
        """Entries worksheet, created on first use."""
        return self._worksheet(self._settings.entries_sheet_name, ENTRY_COLUMNS, 5000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """AuditLog worksheet, created on first use."""
        return self._worksheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000)


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of group and ledger storage.

    One group per row in the Groups sheet, one entry per row in the
    Entries sheet. Entries are appended, so row order is record order.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _group_to_row(self, group: Group) -> list:
        return [
            str(group.id),
            group.name,
            group.created_by.kind.value,
            group.created_by.value,
            group.type.value,
            group.currency,
            group.created_at.isoformat(),
            json.dumps([m.model_dump(mode="json") for m in group.members]),
        ]

    def _row_to_group(self, row: list) -> Group:
        members_json = _safe_get(row, 7)
        members = [Member.model_validate(m) for m in json.loads(members_json)] if members_json else []
        return Group(
            id=UUID(_safe_get(row, 0)),
            name=_safe_get(row, 1),
            created_by=MemberId(kind=_safe_get(row, 2), value=_safe_get(row, 3)),
            type=_safe_get(row, 4),
            currency=_safe_get(row, 5, "INR"),
            created_at=datetime.fromisoformat(_safe_get(row, 6)),
            members=members,
        )

    def _entry_to_row(self, entry: LedgerEntry) -> list:
        return [
            str(entry.id),
            str(entry.group_id) if entry.group_id else "",
            entry.created_at.isoformat(),
            entry.occurred_at.isoformat(),
            entry.description,
            entry.category.value,
            str(entry.amount),
            json.dumps(entry.payer.model_dump(mode="json")),
            entry.payer_name_fallback or "",
            json.dumps([s.model_dump(mode="json") for s in entry.splits]),
            str(entry.is_deleted),
            entry.deleted_at.isoformat() if entry.deleted_at else "",
            entry.deleted_by or "",
            entry.idempotency_key or "",
        ]

    def _row_to_entry(self, row: list) -> LedgerEntry:
        splits_json = _safe_get(row, 9)
        return LedgerEntry.model_validate({
            "id": _safe_get(row, 0),
            "group_id": _safe_get(row, 1) or None,
            "created_at": _safe_get(row, 2),
            "occurred_at": _safe_get(row, 3),
            "description": _safe_get(row, 4),
            "category": _safe_get(row, 5),
            "amount": _safe_get(row, 6),
            "payer": json.loads(_safe_get(row, 7, "null")),
            "payer_name_fallback": _safe_get(row, 8) or None,
            "splits": json.loads(splits_json) if splits_json else [],
            "is_deleted": _safe_get(row, 10).lower() == "true",
            "deleted_at": _safe_get(row, 11) or None,
            "deleted_by": _safe_get(row, 12) or None,
            "idempotency_key": _safe_get(row, 13) or None,
        })

    def _read_groups(self) -> list[tuple[int, Group]]:
        """All parseable groups with their 1-based sheet row number."""
        rows = self._client.get_groups_sheet().get_all_values()[1:]
        groups = []
        for idx, row in enumerate(rows, start=2):
            if not row or not row[0]:
                continue
            try:
                groups.append((idx, self._row_to_group(row)))
            except (ValueError, TypeError) as e:
                logger.warning("skipping_malformed_group_row", row=idx, error=str(e))
        return groups

    def _read_entries(self) -> list[tuple[int, LedgerEntry]]:
        """All parseable entries with their 1-based sheet row number."""
        rows = self._client.get_entries_sheet().get_all_values()[1:]
        entries = []
        for idx, row in enumerate(rows, start=2):
            if not row or not row[0]:
                continue
            try:
                entries.append((idx, self._row_to_entry(row)))
            except (ValueError, TypeError) as e:
                logger.warning("skipping_malformed_entry_row", row=idx, error=str(e))
        return entries

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    @_write_retry
    async def save_group(self, group: Group) -> bool:
        """Save a new group to Google Sheets."""
        try:
            if any(g.id == group.id for _, g in self._read_groups()):
                raise DuplicateError(f"Group already exists: {group.id}")
            sheet = self._client.get_groups_sheet()
            sheet.append_row(self._group_to_row(group), value_input_option="RAW")
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save group: {e}")

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        """Retrieve a group by its ID."""
        try:
            for _, group in self._read_groups():
                if group.id == group_id:
                    return group
            return None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get group: {e}")

    @_write_retry
    async def update_group(self, group: Group) -> bool:
        """Update an existing group row."""
        try:
            for idx, stored in self._read_groups():
                if stored.id == group.id:
                    self._client.get_groups_sheet().update(
                        range_name=f"A{idx}",
                        values=[self._group_to_row(group)],
                        value_input_option="RAW",
                    )
                    return True
            raise NotFoundError(f"Group not found: {group.id}")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update group: {e}")

    async def list_groups_for_member(self, member_id: str) -> list[Group]:
        """List groups the member created or belongs to."""
        try:
            groups = [
                g for _, g in self._read_groups()
                if g.created_by.value == member_id or g.has_member(member_id)
            ]
            groups.sort(key=lambda g: g.created_at, reverse=True)
            return groups
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list groups: {e}")

    async def find_groups_with_shadow_contact(
        self,
        email: Optional[str],
        phone: Optional[str],
    ) -> list[Group]:
        """Find groups holding a shadow member with this email or phone."""
        email = email.strip().lower() if email else None
        phone = phone.strip() if phone else None
        try:
            matches = []
            for _, group in self._read_groups():
                if any(
                    m.is_shadow and ((email and m.email == email) or (phone and m.phone == phone))
                    for m in group.members
                ):
                    matches.append(group)
            return matches
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to search groups: {e}")

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    @_write_retry
    async def append_entry(self, entry: LedgerEntry) -> bool:
        """Append a ledger entry row."""
        try:
            for _, stored in self._read_entries():
                if stored.id == entry.id:
                    raise DuplicateError(f"Entry already exists: {entry.id}")
                if (
                    entry.idempotency_key
                    and stored.group_id == entry.group_id
                    and stored.idempotency_key == entry.idempotency_key
                ):
                    raise DuplicateError(
                        f"Entry already recorded for key {entry.idempotency_key}"
                    )
            sheet = self._client.get_entries_sheet()
            sheet.append_row(self._entry_to_row(entry), value_input_option="RAW")
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save entry: {e}")

    async def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]:
        """Retrieve an entry by its ID."""
        try:
            for _, entry in self._read_entries():
                if entry.id == entry_id:
                    return entry
            return None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get entry: {e}")

    @_write_retry
    async def update_entry(self, entry: LedgerEntry) -> bool:
        """Update an existing entry row."""
        try:
            for idx, stored in self._read_entries():
                if stored.id == entry.id:
                    self._client.get_entries_sheet().update(
                        range_name=f"A{idx}",
                        values=[self._entry_to_row(entry)],
                        value_input_option="RAW",
                    )
                    return True
            raise NotFoundError(f"Entry not found: {entry.id}")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update entry: {e}")

    async def list_entries(
        self,
        group_id: UUID,
        include_deleted: bool = False,
    ) -> list[LedgerEntry]:
        """List a group's entries in sheet order."""
        try:
            return [
                entry for _, entry in self._read_entries()
                if entry.group_id == group_id and (include_deleted or not entry.is_deleted)
            ]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list entries: {e}")

    async def soft_delete_entry(
        self,
        entry_id: UUID,
        deleted_by: Optional[str] = None,
    ) -> LedgerEntry:
        """Flag an entry deleted, keeping its row."""
        entry = await self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Entry not found: {entry_id}")
        entry.is_deleted = True
        entry.deleted_at = datetime.utcnow()
        entry.deleted_by = deleted_by
        await self.update_entry(entry)
        return entry

    async def find_entry_by_idempotency_key(
        self,
        group_id: UUID,
        idempotency_key: str,
    ) -> Optional[LedgerEntry]:
        """Find the entry recorded with this key in the group."""
        try:
            for _, entry in self._read_entries():
                if entry.group_id == group_id and entry.idempotency_key == idempotency_key:
                    return entry
            return None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to search entries: {e}")

    @_write_retry
    async def rewrite_member_id(
        self,
        group_id: UUID,
        old_id: MemberId,
        new_id: MemberId,
    ) -> int:
        """
        Replace a member id in the group row and every entry row.

        All changed rows go out in one batch update per sheet.
        """
        try:
            group_row = None
            for idx, group in self._read_groups():
                if group.id == group_id:
                    group_row = (idx, group)
                    break
            if group_row is None:
                raise NotFoundError(f"Group not found: {group_id}")

            idx, group = group_row
            if not group.relink_member(old_id, new_id):
                return 0

            entry_updates = []
            for entry_idx, entry in self._read_entries():
                if entry.group_id != group_id:
                    continue
                changed = entry.rewrite_member(old_id.value, new_id.value)
                if changed is not None:
                    entry_updates.append({
                        "range": f"A{entry_idx}",
                        "values": [self._entry_to_row(changed)],
                    })

            if entry_updates:
                self._client.get_entries_sheet().batch_update(
                    entry_updates, value_input_option="RAW"
                )
            # Group row last: a retry after a partial failure still finds old_id
            self._client.get_groups_sheet().update(
                range_name=f"A{idx}",
                values=[self._group_to_row(group)],
                value_input_option="RAW",
            )
            return len(entry_updates)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to rewrite member id: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Audit trail in the AuditLog worksheet.

    Rows are only appended. A failed append is logged and reported as
    False, never raised.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """AuditEvent from one AuditLog row."""
        return AuditEvent(
            event_id=UUID(_safe_get(row, 0)),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            event_type=AuditEventType(_safe_get(row, 2)),
            severity=AuditSeverity(_safe_get(row, 3)),
            entity_type=_safe_get(row, 4) or None,
            entity_id=UUID(_safe_get(row, 5)) if _safe_get(row, 5) else None,
            correlation_id=UUID(_safe_get(row, 6)) if _safe_get(row, 6) else None,
            description=_safe_get(row, 7),
            details=json.loads(_safe_get(row, 8)) if _safe_get(row, 8) else {},
            error_message=_safe_get(row, 9) or None,
            actor_id=_safe_get(row, 10) or None,
            is_user_action=_safe_get(row, 11).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        rows = self._client.get_audit_sheet().get_all_values()[1:]
        events = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, TypeError) as e:
                logger.warning("skipping_malformed_audit_row", error=str(e))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event.

        Never raises: a failed audit write must not break the ledger flow.
        """
        try:
            await self._append_row(event.to_sheets_row())
            return True
        except Exception as e:
            logger.warning(
                "audit_write_failed",
                event_type=event.event_type.value,
                error=str(e),
            )
            return False

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _append_row(self, row: list) -> None:
        sheet = self._client.get_audit_sheet()
        sheet.append_row(row, value_input_option="RAW")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one request, oldest first."""
        try:
            events = [e for e in self._read_events() if e.correlation_id == correlation_id]
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Events about one group or entry, oldest first."""
        try:
            events = [
                e for e in self._read_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Newest events first."""
        try:
            events = self._read_events()
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
