"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted storage backend because:
1. Users can inspect their ledgers directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

Documents are stored one per row as JSON, keyed by (collection, doc_id).
Sub-collection records (transactions) are stored one per row in a second
worksheet, keyed by (path, record_id).

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal ledgers)
- Per-document atomicity is a single cell write; the read that checks
  preconditions and the write are separate API calls, so two writers on the
  same document can still race. The ledger layer re-reads and retries on
  conflicts, and never relies on more than single-document atomicity.
- Limited query capabilities (we filter in Python)
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from debtbook.config import get_settings
from debtbook.models.audit import AuditEvent, AuditEventType, AuditSeverity
from debtbook.services.storage.interface import (
    AuditStorageInterface,
    DocumentStoreInterface,
    NotFoundError,
    StorageError,
    StoreUnavailableError,
)
from debtbook.services.storage.memory import apply_updates, check_preconditions


DOCUMENT_COLUMNS = ["collection", "doc_id", "updated_at", "body_json"]

RECORD_COLUMNS = ["path", "record_id", "created_at", "body_json"]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
    "is_user_action",
]

# Transient failures: API quota/5xx errors and network errors (requests
# exceptions derive from OSError).
TRANSIENT_ERRORS = (gspread.exceptions.GSpreadException, OSError)

sheets_retry = retry(
    retry=retry_if_exception_type(StoreUnavailableError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def encode_body(body: dict[str, Any]) -> str:
    return json.dumps(body, default=str, separators=(",", ":"), sort_keys=True)


def decode_body(raw: str) -> dict[str, Any]:
    return json.loads(raw) if raw else {}


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
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
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
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
                raise StoreUnavailableError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StoreUnavailableError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StoreUnavailableError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_documents_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.documents_sheet_name, DOCUMENT_COLUMNS, rows=1000
        )

    def get_records_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.records_sheet_name, RECORD_COLUMNS, rows=5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsDocumentStore(DocumentStoreInterface):
    """
    Google Sheets implementation of the document store.

    Row 1 of each worksheet is the header; data rows start at 2.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _find_row(rows: list[list[str]], first: str, second: str) -> Optional[int]:
        """1-based sheet row index of the matching data row."""
        for idx, row in enumerate(rows[1:], start=2):
            if len(row) >= 2 and row[0] == first and row[1] == second:
                return idx
        return None

    @sheets_retry
    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        try:
            rows = self._client.get_documents_sheet().get_all_values()
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to read document: {e}") from e

        idx = self._find_row(rows, collection, doc_id)
        if idx is None:
            return None
        return decode_body(rows[idx - 1][3] if len(rows[idx - 1]) > 3 else "")

    @sheets_retry
    async def set_if_absent(
        self,
        collection: str,
        doc_id: str,
        document: dict[str, Any],
    ) -> bool:
        try:
            sheet = self._client.get_documents_sheet()
            if self._find_row(sheet.get_all_values(), collection, doc_id) is not None:
                return False
            sheet.append_row(
                [collection, doc_id, datetime.now(timezone.utc).isoformat(), encode_body(document)],
                value_input_option="RAW",
            )
            return True
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to create document: {e}") from e

    @sheets_retry
    async def update_fields(
        self,
        collection: str,
        doc_id: str,
        updates: dict[str, Any],
        preconditions: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            sheet = self._client.get_documents_sheet()
            rows = sheet.get_all_values()
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to read document: {e}") from e

        idx = self._find_row(rows, collection, doc_id)
        if idx is None:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")

        row = rows[idx - 1]
        document = decode_body(row[3] if len(row) > 3 else "")
        check_preconditions(document, preconditions)
        apply_updates(document, updates)

        try:
            sheet.update_cell(idx, 3, datetime.now(timezone.utc).isoformat())
            sheet.update_cell(idx, 4, encode_body(document))
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to update document: {e}") from e

    @sheets_retry
    async def append_record(
        self,
        path: str,
        record: dict[str, Any],
        record_id: Optional[str] = None,
    ) -> str:
        try:
            sheet = self._client.get_records_sheet()
            if record_id is not None:
                if self._find_row(sheet.get_all_values(), path, record_id) is not None:
                    return record_id
            else:
                record_id = uuid.uuid4().hex
            sheet.append_row(
                [path, record_id, datetime.now(timezone.utc).isoformat(), encode_body(record)],
                value_input_option="RAW",
            )
            return record_id
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to append record: {e}") from e

    @sheets_retry
    async def list_records(self, path: str) -> list[tuple[str, dict[str, Any]]]:
        try:
            rows = self._client.get_records_sheet().get_all_values()[1:]
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to list records: {e}") from e

        return [
            (row[1], decode_body(row[3] if len(row) > 3 else ""))
            for row in rows
            if len(row) >= 2 and row[0] == path
        ]

    @sheets_retry
    async def delete_record(self, path: str, record_id: str) -> bool:
        try:
            sheet = self._client.get_records_sheet()
            idx = self._find_row(sheet.get_all_values(), path, record_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to delete record: {e}") from e

    @sheets_retry
    async def query_by_field(
        self,
        collection: str,
        field: str,
        value: Any,
    ) -> list[tuple[str, dict[str, Any]]]:
        try:
            rows = self._client.get_documents_sheet().get_all_values()[1:]
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailableError(f"Failed to query documents: {e}") from e

        matches = []
        for row in rows:
            if len(row) < 4 or row[0] != collection:
                continue
            document = decode_body(row[3])
            if document.get(field) == value:
                matches.append((row[1], document))
        return matches


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            actor_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_code=safe_get(10) or None,
            error_message=safe_get(11) or None,
            is_user_action=safe_get(12).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        try:
            all_rows = self._client.get_audit_sheet().get_all_values()[1:]
        except TRANSIENT_ERRORS as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue  # Skip malformed rows
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except (StorageError, *TRANSIENT_ERRORS) as e:
            raise StorageError(f"Failed to write audit event: {e}") from e

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._read_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._read_events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
