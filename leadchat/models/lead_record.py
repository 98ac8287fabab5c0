"""
LeadRecord — the one canonical lead shape flowing extraction → scoring → sinks.

Every attribute is optional. An empty LeadRecord() means "nothing known yet"
and is what a failed extraction produces; it scores at the base weight.
"""
import re
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


START_TIME_FORMAT = '%Y-%m-%d %H:%M:%S'

# Strings the text model uses for "unknown"
NULL_SENTINELS = {'', 'null', 'none', 'n/a', 'unknown', 'undefined'}


class Tonality(str, Enum):
    POSITIVE = 'Positive'
    NEUTRAL = 'Neutral'
    NEGATIVE = 'Negative'
    URGENT = 'Urgent'

    @classmethod
    def parse(cls, value: Any) -> Optional['Tonality']:
        """Case-insensitive lookup; anything unrecognized is None."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        wanted = value.strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        return None


def is_present(value: Any) -> bool:
    """True for a real value — not None, blank, or a null sentinel."""
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() not in NULL_SENTINELS


def _clean_text(value: Any) -> Optional[str]:
    if isinstance(value, (dict, list, bool)) or not is_present(value):
        return None
    return str(value).strip()


def _clean_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ('true', 'yes', 'y', '1')
    return False


_BUDGET_PATTERN = re.compile(r'(\d+(?:\.\d+)?)\s*(k|thousand|m|mn|million)?\b')
_BUDGET_MULTIPLIERS = {'k': 1_000, 'thousand': 1_000, 'm': 1_000_000, 'mn': 1_000_000, 'million': 1_000_000}


def parse_budget(value: Any) -> Optional[int]:
    """
    Currency-free integer budget.

    Accepts numbers or strings like "5,000,000 EGP", "3.5M", "750k".
    Returns None when no number can be read.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    if not isinstance(value, str):
        return None

    text = value.lower().replace(',', '')
    match = _BUDGET_PATTERN.search(text)
    if not match:
        return None
    amount = float(match.group(1)) * _BUDGET_MULTIPLIERS.get(match.group(2) or '', 1)
    return int(amount) if amount > 0 else None


@dataclass
class LeadRecord:
    """A qualified (or partially qualified) lead for one chat session."""
    session_id: str = ''
    name: Optional[str] = None
    phone: Optional[str] = None
    budget: Optional[int] = None
    location: Optional[str] = None
    compound: Optional[str] = None
    unit_type: Optional[str] = None
    area: Optional[str] = None
    call_requested: bool = False
    best_call_time: Optional[str] = None
    tonality: Optional[Tonality] = None
    heat_score: int = 0
    summary: str = ''
    start_time: Optional[datetime] = None

    @classmethod
    def from_extraction(cls, data: Dict[str, Any]) -> 'LeadRecord':
        """
        Build a record from the extraction model's JSON object.

        Field by field coercion: values with the wrong shape are dropped,
        never guessed. heat_score from the model is ignored.
        """
        if not isinstance(data, dict):
            return cls()

        best_call_time = _clean_text(data.get('best_call_time'))
        return cls(
            name=_clean_text(data.get('name')),
            phone=_clean_text(data.get('phone')),
            budget=parse_budget(data.get('budget')),
            location=_clean_text(data.get('location')),
            compound=_clean_text(data.get('compound')),
            unit_type=_clean_text(data.get('unit_type')),
            area=_clean_text(data.get('area')),
            call_requested=_clean_flag(data.get('call_requested')),
            best_call_time=best_call_time,
            tonality=Tonality.parse(data.get('tonality')),
        )

    @property
    def is_empty(self) -> bool:
        return self == LeadRecord(session_id=self.session_id, start_time=self.start_time)

    @property
    def start_time_str(self) -> str:
        return self.start_time.strftime(START_TIME_FORMAT) if self.start_time else ''

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['tonality'] = self.tonality.value if self.tonality else None
        data['start_time'] = self.start_time_str or None
        return data
