"""
Persistence sinks for a finalized LeadRecord.

Every sink implements LeadSink.write(lead) — upsert by session id with full
replacement, raising on failure. Isolation, timeouts and outcome bookkeeping
live in PersistenceFanout; a sink only knows how to talk to its destination.

  - PrimaryStoreSink  → SQLAlchemy `leads` table (the system of record)
  - LegacyRelaySink   → fire-and-forget HTTP logger, best effort
  - SpreadsheetSink   → Google Sheets mirror used by the sales team
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import requests

from leadchat.config import (
    PRIMARY_STORE_TIMEOUT_SECONDS,
    LEGACY_LOGGER_TIMEOUT_SECONDS,
    SHEETS_TIMEOUT_SECONDS,
    DATA_SHEET_TITLE,
)
from leadchat.database import session_scope
from leadchat.models.lead import Lead
from leadchat.models.lead_record import LeadRecord, Tonality
from leadchat.services.circuit_breaker import get_breaker

logger = logging.getLogger('pipeline.sinks')


class LeadSink(ABC):
    """
    Base class for all persistence destinations.

    Exactly one registered sink must be primary; PersistenceFanout reports
    durability from its outcome alone.
    """
    name: str = ''
    primary: bool = False
    timeout: float = 5.0

    # Shown in /api/health next to the breaker states
    description: str = ''

    @abstractmethod
    def write(self, lead: LeadRecord) -> None:
        """Upsert the full record keyed by lead.session_id. Raise on failure."""
        ...


# ── Primary store ────────────────────────────────────────────────────────────

class PrimaryStoreSink(LeadSink):
    """The `leads` table. Every column is overwritten on each write."""
    name = 'primary_store'
    primary = True
    description = 'SQL leads table (system of record)'

    def __init__(self, session_factory=None, timeout: float = PRIMARY_STORE_TIMEOUT_SECONDS):
        self.session_factory = session_factory
        self.timeout = timeout

    def write(self, lead: LeadRecord) -> None:
        if not lead.session_id:
            raise ValueError("Lead has no session_id")

        with session_scope(self.session_factory) as session:
            row = session.get(Lead, lead.session_id)
            if row is None:
                row = Lead(session_id=lead.session_id)
                session.add(row)

            row.name = lead.name
            row.phone = lead.phone
            row.budget = lead.budget
            row.heat_score = lead.heat_score
            row.summary = lead.summary
            row.start_time = lead.start_time
            row.area = lead.area
            row.location = lead.location
            row.compound = lead.compound
            row.unit_type = lead.unit_type
            row.call_requested = bool(lead.call_requested)
            row.best_call_time = lead.best_call_time
            row.tonality = lead.tonality.value if lead.tonality else None

        logger.debug("Lead %s saved to primary store", lead.session_id)

    def load(self, session_id: str) -> Optional[LeadRecord]:
        """Read a lead back by chat id; None when it was never written."""
        with session_scope(self.session_factory) as session:
            row = session.get(Lead, session_id)
            if row is None:
                return None
            return LeadRecord(
                session_id=row.session_id,
                name=row.name,
                phone=row.phone,
                budget=row.budget,
                location=row.location,
                compound=row.compound,
                unit_type=row.unit_type,
                area=row.area,
                call_requested=bool(row.call_requested),
                best_call_time=row.best_call_time,
                tonality=Tonality.parse(row.tonality),
                heat_score=row.heat_score or 0,
                summary=row.summary or '',
                start_time=row.start_time,
            )


# ── Legacy HTTP logger ───────────────────────────────────────────────────────

def legacy_payload(lead: LeadRecord) -> Dict[str, str]:
    """Flat camelCase payload; every value is a string, missing → ''."""
    def text(value):
        return '' if value is None else str(value)

    return {
        'chatId': text(lead.session_id),
        'name': text(lead.name),
        'phone': text(lead.phone),
        'budget': text(lead.budget),
        'area': text(lead.area),
        'location': text(lead.location),
        'unitType': text(lead.unit_type),
        'heatScore': text(lead.heat_score),
        'startTime': lead.start_time_str,
        'summary': text(lead.summary),
        'callRequested': 'true' if lead.call_requested else 'false',
        'bestCallTime': text(lead.best_call_time),
    }


class LegacyRelaySink(LeadSink):
    """
    Best-effort relay to the legacy logging service.

    One attempt, sub-second timeout, no retries. Repeated failures open the
    `legacy_logger` breaker so a dead logger costs nothing per turn.
    """
    name = 'legacy_logger'
    primary = False
    description = 'Legacy HTTP logger (best effort)'

    def __init__(self, url: str, timeout: float = LEGACY_LOGGER_TIMEOUT_SECONDS):
        self.url = url
        self.timeout = timeout

    def write(self, lead: LeadRecord) -> None:
        cb = get_breaker('legacy_logger')
        response = cb.call(requests.post, self.url, json=legacy_payload(lead), timeout=self.timeout)
        response.raise_for_status()


# ── Spreadsheet mirror ───────────────────────────────────────────────────────

SHEET_KEY_COLUMN = 'Chat ID'
SHEET_COLUMNS: List[str] = [
    'Chat ID', 'Name', 'Phone', 'Budget', 'Area', 'Location', 'Unit Type',
    'Heat Scoring', 'Time Stamp', 'Chat Summary', 'Call Requested Y/N', 'Call Time',
]


def sheet_row(lead: LeadRecord) -> Dict[str, str]:
    def text(value):
        return '' if value is None else str(value)

    return {
        'Chat ID': text(lead.session_id),
        'Name': text(lead.name),
        'Phone': text(lead.phone),
        'Budget': text(lead.budget),
        'Area': text(lead.area),
        'Location': text(lead.location),
        'Unit Type': text(lead.unit_type),
        'Heat Scoring': text(lead.heat_score),
        'Time Stamp': lead.start_time_str,
        'Chat Summary': text(lead.summary),
        'Call Requested Y/N': 'Yes' if lead.call_requested else 'No',
        'Call Time': text(lead.best_call_time),
    }


class SpreadsheetSink(LeadSink):
    """Google Sheets row per chat, looked up by Chat ID before writing."""
    name = 'spreadsheet'
    primary = False
    description = 'Google Sheets lead mirror'

    def __init__(self, sheets_client, spreadsheet_id: str,
                 sheet_title: str = DATA_SHEET_TITLE, timeout: float = SHEETS_TIMEOUT_SECONDS):
        self.sheets_client = sheets_client
        self.spreadsheet_id = spreadsheet_id
        self.sheet_title = sheet_title
        self.timeout = timeout

    def write(self, lead: LeadRecord) -> None:
        action = self.sheets_client.upsert_row(
            self.spreadsheet_id, self.sheet_title, SHEET_KEY_COLUMN,
            sheet_row(lead), SHEET_COLUMNS,
        )
        logger.debug("Sheet %s for chat %s", action, lead.session_id)
