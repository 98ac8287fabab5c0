"""
Chat routes — turn submission and clear for the chat widget.
"""
import logging

from flask import Blueprint, current_app, jsonify, request

from leadchat.config import SESSION_COOKIE_MAX_AGE
from leadchat.models.lead_record import START_TIME_FORMAT
from leadchat.pipeline.turn import TurnFailed

logger = logging.getLogger('routes.chat')

bp = Blueprint('chat', __name__, url_prefix='/chat')

COOKIE_CHAT_ID = 'chat_id'
COOKIE_START_TIME = 'chat_start_time'


def _pipeline():
    return current_app.extensions['turn_pipeline']


def _json_payload():
    """Request body as a dict; anything else (missing, malformed, list, scalar) is empty."""
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _requested_session_id(payload):
    """Client id first (sessionStorage), then the legacy field, then the cookie."""
    return payload.get('sessionId') or payload.get('chatId') or request.cookies.get(COOKIE_CHAT_ID)


@bp.route('/message', methods=['POST'])
def message():
    """Submit one user message; returns the assistant reply."""
    payload = _json_payload()
    text = payload.get('message')
    if not isinstance(text, str) or not text.strip():
        return jsonify({'error': 'Bad Request', 'message': 'message is required'}), 400

    try:
        outcome = _pipeline().handle_turn(text, _requested_session_id(payload))
    except TurnFailed as e:
        return jsonify({'error': 'Internal Server Error', 'message': str(e)}), 500

    resp = jsonify({'reply': outcome.reply, 'sessionId': outcome.session_id})
    if outcome.is_new_session:
        resp.set_cookie(COOKIE_CHAT_ID, outcome.session_id, max_age=SESSION_COOKIE_MAX_AGE, httponly=True)
        resp.set_cookie(
            COOKIE_START_TIME, outcome.start_time.strftime(START_TIME_FORMAT),
            max_age=SESSION_COOKIE_MAX_AGE, httponly=True,
        )
    return resp


@bp.route('/clear', methods=['POST'])
def clear():
    """Drop the session's history and the chat cookies."""
    payload = _json_payload()
    session_id = _requested_session_id(payload)
    if session_id:
        _pipeline().clear(session_id)

    resp = jsonify({'success': True})
    resp.delete_cookie(COOKIE_CHAT_ID)
    resp.delete_cookie(COOKIE_START_TIME)
    return resp
