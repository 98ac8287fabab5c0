"""
Flask application factory.

Creates and configures the Flask app, wires the chat services and registers
all blueprints. The wired TurnPipeline lives in app.extensions['turn_pipeline'].
"""
from flask import Flask


def _build_sinks(sheets_client):
    """Primary store always; secondary sinks only when configured."""
    from leadchat import config
    from leadchat.pipeline.sinks import PrimaryStoreSink, LegacyRelaySink, SpreadsheetSink

    sinks = [PrimaryStoreSink()]
    if config.LEGACY_LOGGER_URL:
        sinks.append(LegacyRelaySink(config.LEGACY_LOGGER_URL))
    if config.DATA_SHEET_ID and sheets_client.configured:
        sinks.append(SpreadsheetSink(sheets_client, config.DATA_SHEET_ID, config.DATA_SHEET_TITLE))
    return sinks


def build_pipeline():
    """Wire SessionStore → LeadExtractor → PersistenceFanout → TurnPipeline."""
    from leadchat import config
    from leadchat.pipeline.fanout import PersistenceFanout
    from leadchat.pipeline.turn import TurnPipeline
    from leadchat.services.lead_extractor import LeadExtractor
    from leadchat.services.session_store import SessionStore
    from leadchat.services.sheets import SheetsClient, CompoundCatalog

    store = SessionStore(
        max_id_length=config.SESSION_ID_MAX_LENGTH,
        idle_ttl=config.SESSION_IDLE_TTL_SECONDS or None,
        sweep_interval=config.SESSION_SWEEP_INTERVAL_SECONDS,
    )
    extractor = LeadExtractor(
        chat_backend=config.CHAT_MODEL,
        extract_backend=config.EXTRACT_MODEL,
        timeout=config.LLM_TIMEOUT_SECONDS,
        max_workers=config.LLM_WORKERS,
    )
    sheets_client = SheetsClient(config.GOOGLE_CREDENTIALS_PATH, timeout=config.SHEETS_TIMEOUT_SECONDS)
    catalog = CompoundCatalog(sheets_client, config.COMPOUNDS_SHEET_ID, config.COMPOUNDS_SHEET_TITLE)

    return TurnPipeline(
        store,
        extractor,
        PersistenceFanout(_build_sinks(sheets_client)),
        context_provider=catalog,
        history_window=config.HISTORY_WINDOW,
        persist_mode=config.PERSIST_MODE,
        max_workers=config.ENRICHMENT_WORKERS,
    )


def create_app():
    """Create and configure the Flask application."""
    from leadchat.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    from leadchat.config import SECRET_KEY
    app.secret_key = SECRET_KEY

    # Register blueprints
    from leadchat.routes.chat import bp as chat_bp
    from leadchat.routes.health import bp as health_bp

    app.register_blueprint(chat_bp)
    app.register_blueprint(health_bp)

    # Initialize circuit breakers for external services
    from leadchat.extensions import redis_client
    from leadchat.services.circuit_breaker import init_breakers
    init_breakers(redis_client)

    # Import models so Base.metadata knows about them.
    # Schema is managed by Alembic — no create_all() call.
    import importlib
    importlib.import_module('leadchat.models.lead')

    app.extensions['turn_pipeline'] = build_pipeline()
    app.logger.info("Chat pipeline ready (persist_mode=%s, sinks=%s)",
                    app.extensions['turn_pipeline'].persist_mode,
                    [s.name for s in app.extensions['turn_pipeline'].fanout.sinks])

    return app
