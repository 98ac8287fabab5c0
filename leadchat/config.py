"""
Centralized configuration — all env vars and tunables.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Flask ────────────────────────────────────────────────────────────────────
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-change-me')

# ── Redis (circuit breaker state) ────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── Primary lead store ───────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///leads.db')
PRIMARY_STORE_TIMEOUT_SECONDS = float(os.getenv('PRIMARY_STORE_TIMEOUT_SECONDS', '5'))

# ── Text generation ──────────────────────────────────────────────────────────
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')

ANTHROPIC_API_KEY = os.getenv('ANTHROPIC_API_KEY')
ANTHROPIC_MODEL = os.getenv('ANTHROPIC_MODEL', 'claude-haiku-4-5-20251001')

OLLAMA_URL = os.getenv('OLLAMA_URL', 'http://localhost:11434')
OLLAMA_MODEL = os.getenv('OLLAMA_MODEL', 'gemma3:1b')

# Backend per purpose: openai | anthropic | ollama
CHAT_MODEL = os.getenv('CHAT_MODEL', 'openai')
EXTRACT_MODEL = os.getenv('EXTRACT_MODEL', 'openai')
LLM_TIMEOUT_SECONDS = float(os.getenv('LLM_TIMEOUT_SECONDS', '20'))
# Concurrent text generation calls; size to the number of request threads
LLM_WORKERS = int(os.getenv('LLM_WORKERS', '16'))

# ── Legacy HTTP logger ───────────────────────────────────────────────────────
LEGACY_LOGGER_URL = os.getenv('LEGACY_LOGGER_URL', 'http://localhost:8080/log')
LEGACY_LOGGER_TIMEOUT_SECONDS = float(os.getenv('LEGACY_LOGGER_TIMEOUT_SECONDS', '1.0'))

# ── Google Sheets ────────────────────────────────────────────────────────────
GOOGLE_CREDENTIALS_PATH = os.getenv('GOOGLE_CREDENTIALS_PATH', 'credentials.json')
DATA_SHEET_ID = os.getenv('DATA_SHEET_ID')
DATA_SHEET_TITLE = os.getenv('DATA_SHEET_TITLE', 'data')
COMPOUNDS_SHEET_ID = os.getenv('COMPOUNDS_SHEET_ID')
COMPOUNDS_SHEET_TITLE = os.getenv('COMPOUNDS_SHEET_TITLE', 'compounds')
SHEETS_TIMEOUT_SECONDS = float(os.getenv('SHEETS_TIMEOUT_SECONDS', '10'))

# ── Chat sessions ────────────────────────────────────────────────────────────
SESSION_ID_MAX_LENGTH = int(os.getenv('SESSION_ID_MAX_LENGTH', '8'))
SESSION_IDLE_TTL_SECONDS = int(os.getenv('SESSION_IDLE_TTL_SECONDS', str(86400)))
SESSION_SWEEP_INTERVAL_SECONDS = int(os.getenv('SESSION_SWEEP_INTERVAL_SECONDS', '60'))
SESSION_COOKIE_MAX_AGE = int(os.getenv('SESSION_COOKIE_MAX_AGE', str(86400)))

# Last 6 turns ≈ 3 exchanges of context for the reply
HISTORY_WINDOW = int(os.getenv('HISTORY_WINDOW', '6'))

# ── Enrichment (extract → score → summarize → persist) ──────────────────────
# async: after the reply is returned; sync: before responding
PERSIST_MODE = os.getenv('PERSIST_MODE', 'async')
ENRICHMENT_WORKERS = int(os.getenv('ENRICHMENT_WORKERS', '4'))
