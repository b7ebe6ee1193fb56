"""Google Sheets sync over a service account."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Optional, Sequence, Set, Tuple

import gspread
from google.oauth2.service_account import Credentials

from leadscout.config import Settings, get_settings
from leadscout.errors import ConfigurationError, SyncFailure
from leadscout.schemas import SHEET_HEADER

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]
NEW_TAB_ROWS = 1000
LEAD_ID_COLUMN = 2


class GoogleSheetSync:
    def __init__(self, settings: Optional[Settings] = None, client: Optional[gspread.Client] = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> gspread.Client:
        if self._client is None:
            path = self.settings.google_application_credentials
            if not path:
                raise ConfigurationError("GOOGLE_APPLICATION_CREDENTIALS is not set")
            try:
                creds = Credentials.from_service_account_file(path, scopes=SCOPES)
            except (OSError, ValueError) as exc:
                raise ConfigurationError(f"Cannot load service account credentials from {path}: {exc}") from exc
            self._client = gspread.authorize(creds)
        return self._client

    def service_account_email(self) -> Optional[str]:
        path = self.settings.google_application_credentials
        if not path:
            return None
        try:
            with open(path, encoding="utf-8") as handle:
                return json.load(handle).get("client_email")
        except (OSError, ValueError) as exc:
            logger.warning("[SHEETS] Cannot read service account file %s: %s", path, exc)
            return None

    # ── Async surface ─────────────────────────────────────────────────────────

    async def create_spreadsheet(
        self, title: str, tab: str, share_with: Sequence[str] = (), folder_id: Optional[str] = None
    ) -> Tuple[str, str]:
        return await asyncio.to_thread(self._create_spreadsheet, title, tab, list(share_with), folder_id)

    async def ensure_header(self, sheet_id: str, tab: str) -> None:
        await asyncio.to_thread(self._ensure_header, sheet_id, tab)

    async def fetch_existing_keys(self, sheet_id: str, tab: str) -> Set[str]:
        return await asyncio.to_thread(self._fetch_existing_keys, sheet_id, tab)

    async def append_rows(self, rows: List[List[Any]], sheet_id: str, tab: str) -> int:
        if not rows:
            return 0
        return await asyncio.to_thread(self._append_rows, rows, sheet_id, tab)

    # ── Blocking gspread calls ────────────────────────────────────────────────

    def _create_spreadsheet(self, title, tab, share_with, folder_id):
        try:
            spreadsheet = self.client.create(title, folder_id=folder_id or None)
            spreadsheet.sheet1.update_title(tab)
            spreadsheet.sheet1.update(range_name="A1", values=[SHEET_HEADER])
            for email in share_with:
                spreadsheet.share(email, perm_type="user", role="writer", notify=False)
        except gspread.exceptions.APIError as exc:
            raise SyncFailure(f"Spreadsheet creation failed: {exc}") from exc
        logger.info("[SHEETS] Created spreadsheet %s (%s), shared with %s", title, spreadsheet.id, len(share_with))
        return spreadsheet.id, spreadsheet.url

    def _worksheet(self, sheet_id: str, tab: str):
        spreadsheet = self.client.open_by_key(sheet_id)
        try:
            return spreadsheet.worksheet(tab)
        except gspread.WorksheetNotFound:
            logger.info("[SHEETS] Creating missing tab: %s", tab)
            return spreadsheet.add_worksheet(title=tab, rows=NEW_TAB_ROWS, cols=len(SHEET_HEADER))

    def _ensure_header(self, sheet_id, tab):
        try:
            worksheet = self._worksheet(sheet_id, tab)
            if not worksheet.row_values(1):
                worksheet.update(range_name="A1", values=[SHEET_HEADER])
        except gspread.exceptions.APIError as exc:
            raise SyncFailure(f"Header check failed for {sheet_id}/{tab}: {exc}") from exc

    def _fetch_existing_keys(self, sheet_id, tab):
        try:
            values = self._worksheet(sheet_id, tab).col_values(LEAD_ID_COLUMN)
        except gspread.exceptions.APIError as exc:
            raise SyncFailure(f"Reading lead ids failed for {sheet_id}/{tab}: {exc}") from exc
        return {value for value in values[1:] if value}

    def _append_rows(self, rows, sheet_id, tab):
        try:
            self._worksheet(sheet_id, tab).append_rows(
                rows, value_input_option="RAW", insert_data_option="INSERT_ROWS"
            )
        except gspread.exceptions.APIError as exc:
            raise SyncFailure(f"Append to {sheet_id}/{tab} failed: {exc}") from exc
        logger.info("[SHEETS] Appended %s rows to %s/%s", len(rows), sheet_id, tab)
        return len(rows)
