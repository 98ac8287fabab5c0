"""
Shared client instances — Redis, OpenAI, Anthropic.

Clients are created at import time only when their credentials are present,
so importing this module is always safe (even when env vars are missing
during tests).
"""
import logging
import redis

from leadchat.config import REDIS_URL, OPENAI_API_KEY, ANTHROPIC_API_KEY

logger = logging.getLogger('leadchat.extensions')

# ── Redis ─────────────────────────────────────────────────────────────────────
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# ── OpenAI ────────────────────────────────────────────────────────────────────
openai_client = None
if OPENAI_API_KEY:
    try:
        from openai import OpenAI
        # Retries are owned by llm_client so the turn timeout stays meaningful
        openai_client = OpenAI(api_key=OPENAI_API_KEY, max_retries=0)
        logger.info("OpenAI client initialized successfully")
    except Exception as e:
        logger.error("Error initializing OpenAI client: %s", e)
else:
    logger.warning("OPENAI_API_KEY not set")

# ── Anthropic ─────────────────────────────────────────────────────────────────
anthropic_client = None
if ANTHROPIC_API_KEY:
    try:
        from anthropic import Anthropic
        anthropic_client = Anthropic(api_key=ANTHROPIC_API_KEY, max_retries=0)
        logger.info("Anthropic client initialized successfully")
    except Exception as e:
        logger.error("Error initializing Anthropic client: %s", e)
