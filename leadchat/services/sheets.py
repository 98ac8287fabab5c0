"""
Google Sheets access — compounds catalogue (read) and the lead mirror (upsert).

Uses a service account and the Sheets v4 values API. The service object is
built lazily so the app starts fine without credentials; callers check
`configured` before relying on it.
"""
import logging
import os
import threading
from typing import Dict, List, Optional

from leadchat.config import (
    GOOGLE_CREDENTIALS_PATH, SHEETS_TIMEOUT_SECONDS,
    COMPOUNDS_SHEET_ID, COMPOUNDS_SHEET_TITLE,
)
from leadchat.services.circuit_breaker import get_breaker

logger = logging.getLogger('services.sheets')

SCOPES = ['https://www.googleapis.com/auth/spreadsheets']


def _column_letter(index: int) -> str:
    """0 → A, 25 → Z, 26 → AA."""
    letters = ''
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


class SheetsClient:
    """Thin wrapper over spreadsheets().values() with a per-request timeout."""

    def __init__(self, credentials_path: str = GOOGLE_CREDENTIALS_PATH,
                 timeout: float = SHEETS_TIMEOUT_SECONDS, service=None):
        self.credentials_path = credentials_path
        self.timeout = timeout
        self._service = service
        self._lock = threading.Lock()

    @property
    def configured(self) -> bool:
        return self._service is not None or bool(
            self.credentials_path and os.path.exists(self.credentials_path)
        )

    def _get_service(self):
        """Get or build the Sheets service (one per client)."""
        with self._lock:
            if self._service is not None:
                return self._service

            import httplib2
            from google.oauth2 import service_account
            from google_auth_httplib2 import AuthorizedHttp
            from googleapiclient.discovery import build

            credentials = service_account.Credentials.from_service_account_file(
                self.credentials_path, scopes=SCOPES,
            )
            http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=self.timeout))
            self._service = build('sheets', 'v4', http=http, cache_discovery=False)
            logger.info("Google Sheets service initialized")
            return self._service

    def _execute(self, request):
        return get_breaker('sheets').call(request.execute)

    def read_values(self, spreadsheet_id: str, sheet_title: str) -> List[List[str]]:
        """All cell values of a sheet, header row first."""
        values = self._get_service().spreadsheets().values()
        result = self._execute(values.get(spreadsheetId=spreadsheet_id, range=f"'{sheet_title}'"))
        return result.get('values', [])

    def read_records(self, spreadsheet_id: str, sheet_title: str) -> List[Dict[str, str]]:
        """Rows as dicts keyed by the header row."""
        rows = self.read_values(spreadsheet_id, sheet_title)
        if not rows:
            return []
        header = rows[0]
        return [
            {column: (row[i] if i < len(row) else '') for i, column in enumerate(header)}
            for row in rows[1:]
        ]

    def upsert_row(self, spreadsheet_id: str, sheet_title: str, key_column: str,
                   row: Dict[str, str], columns: List[str]) -> str:
        """
        Update the row whose key_column equals row[key_column], else append.

        Missing header row → `columns` is written as the header first.
        Returns 'updated' or 'appended'.
        """
        values_api = self._get_service().spreadsheets().values()
        existing = self.read_values(spreadsheet_id, sheet_title)

        header = existing[0] if existing else []
        if not header:
            header = list(columns)
            self._execute(values_api.update(
                spreadsheetId=spreadsheet_id, range=f"'{sheet_title}'!A1",
                valueInputOption='RAW', body={'values': [header]},
            ))

        if key_column not in header:
            raise ValueError(f"Sheet '{sheet_title}' has no '{key_column}' column")

        ordered = [row.get(column, '') for column in header]
        key_index = header.index(key_column)
        key = row.get(key_column, '')

        for offset, existing_row in enumerate(existing[1:], start=2):
            if key_index < len(existing_row) and existing_row[key_index] == key:
                last = _column_letter(len(header) - 1)
                self._execute(values_api.update(
                    spreadsheetId=spreadsheet_id, range=f"'{sheet_title}'!A{offset}:{last}{offset}",
                    valueInputOption='RAW', body={'values': [ordered]},
                ))
                logger.info("Updated sheet row %d for %s", offset, key)
                return 'updated'

        self._execute(values_api.append(
            spreadsheetId=spreadsheet_id, range=f"'{sheet_title}'",
            valueInputOption='RAW', insertDataOption='INSERT_ROWS',
            body={'values': [ordered]},
        ))
        logger.info("Appended sheet row for %s", key)
        return 'appended'


class CompoundCatalog:
    """
    Domain context for reply generation — the compounds sheet, cached after
    the first successful read. Any failure yields [] so replies still go out.
    """

    def __init__(self, client: SheetsClient, spreadsheet_id: Optional[str] = COMPOUNDS_SHEET_ID,
                 sheet_title: str = COMPOUNDS_SHEET_TITLE):
        self.client = client
        self.spreadsheet_id = spreadsheet_id
        self.sheet_title = sheet_title
        self._compounds: List[Dict[str, str]] = []

    def __call__(self) -> List[Dict[str, str]]:
        return self.get()

    def get(self) -> List[Dict[str, str]]:
        if self._compounds:
            return self._compounds
        if not self.spreadsheet_id or not self.client.configured:
            return []
        try:
            self._compounds = self.client.read_records(self.spreadsheet_id, self.sheet_title)
            logger.info("Loaded %d compounds", len(self._compounds))
        except Exception as e:
            logger.error("Error getting compounds: %s", e)
            return []
        return self._compounds

    def refresh(self):
        self._compounds = []
        return self.get()
