"""
Heat score — deterministic 0–100 lead quality/urgency score.

Pure function of the extracted lead and the client's response latency:
no I/O beyond the one-time weights load, no randomness, no model calls.
Weights come from scoring_config.yaml with a hardcoded fallback.
"""
import logging
import math
import os
import re
from typing import Any, Dict, Optional

import yaml

from leadchat.models.lead_record import LeadRecord, Tonality, is_present

logger = logging.getLogger('pipeline.scoring')


# ── Scoring config (YAML with hardcoded fallback) ────────────────────────────

_scoring_config = None


def _default_config():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'default',
        'base': 20,
        'fields': {
            'phone': 25,
            'name': 5,
            'budget': 10,
            'location': 10,
            'unit_type': 10,
        },
        'tonality': {
            'Urgent': 25,
            'Positive': 10,
            'Negative': -10,
            'Neutral': 0,
        },
        'response_time': {
            'fast': {'under': 30, 'points': 10},
            'prompt': {'under': 120, 'points': 5},
            'slow': {'over': 3600, 'points': -5},
        },
        'call_requested': 20,
        'high_budget': {'threshold': 5_000_000, 'points': 10},
        'bounds': {'min': 0, 'max': 100},
    }


def load_scoring_config():
    """Load scoring config from YAML, with in-memory cache and hardcoded fallback."""
    global _scoring_config
    if _scoring_config is not None:
        return _scoring_config

    config_path = os.path.join(os.path.dirname(__file__), 'scoring_config.yaml')
    try:
        with open(config_path, 'r') as f:
            _scoring_config = yaml.safe_load(f)
        logger.info("Config loaded from YAML (version=%s)", _scoring_config.get('version', '?'))
    except Exception as e:
        logger.warning("YAML config not found (%s), using defaults", e)
        _scoring_config = _default_config()

    return _scoring_config


# ── Components ───────────────────────────────────────────────────────────────

_NON_DIGITS = re.compile(r'\D')


def _budget_amount(budget: Any) -> int:
    """Digits of the budget as an int; '5,500,000 EGP' → 5500000, junk → 0."""
    if not is_present(budget):
        return 0
    if isinstance(budget, float):
        budget = int(budget)
    digits = _NON_DIGITS.sub('', str(budget))
    return int(digits) if digits else 0


def _response_points(elapsed_seconds: Optional[float], rules: Dict[str, Dict[str, float]]) -> int:
    # None = first turn; 0 or negative = clock oddity. Neither is "fast".
    if elapsed_seconds is None or elapsed_seconds <= 0:
        return 0
    for rule in rules.values():
        if 'under' in rule and elapsed_seconds < rule['under']:
            return rule['points']
        if 'over' in rule and elapsed_seconds > rule['over']:
            return rule['points']
    return 0


def score_breakdown(lead: LeadRecord, elapsed_seconds: Optional[float] = None) -> Dict[str, int]:
    """
    Per-component contributions, in application order.

    Keys: base, one per qualifying field, tonality, response_time,
    call_requested, high_budget. Zero-valued components are included.
    """
    cfg = load_scoring_config()
    parts = {'base': cfg['base']}

    for field_name, points in cfg['fields'].items():
        parts[field_name] = points if is_present(getattr(lead, field_name, None)) else 0

    tonality = Tonality.parse(lead.tonality)
    parts['tonality'] = cfg['tonality'].get(tonality.value, 0) if tonality else 0

    parts['response_time'] = _response_points(elapsed_seconds, cfg['response_time'])
    parts['call_requested'] = cfg['call_requested'] if lead.call_requested is True else 0

    high_budget = cfg['high_budget']
    parts['high_budget'] = high_budget['points'] if _budget_amount(lead.budget) > high_budget['threshold'] else 0
    return parts


def score(lead: LeadRecord, elapsed_seconds: Optional[float] = None) -> int:
    """Heat score for a lead: base + adjustments, rounded half-up, clamped to bounds."""
    bounds = load_scoring_config()['bounds']
    total = sum(score_breakdown(lead, elapsed_seconds).values())
    rounded = math.floor(total + 0.5)
    return max(bounds['min'], min(bounds['max'], rounded))
