"""
Health routes — liveness plus circuit breaker state per external service.
"""
import logging

from flask import Blueprint, current_app, jsonify

from leadchat.services.circuit_breaker import get_all_breakers

logger = logging.getLogger('routes.health')

bp = Blueprint('health', __name__)


@bp.route('/health')
def health_check():
    """Health check endpoint."""
    return jsonify({"status": "healthy"}), 200


@bp.route('/api/health')
def api_health():
    """Breaker health per service, plus the registered persistence sinks."""
    services = {name: cb.get_health() for name, cb in get_all_breakers().items()}
    pipeline = current_app.extensions.get('turn_pipeline')
    sinks = []
    fanout = getattr(pipeline, 'fanout', None)
    for sink in getattr(fanout, 'sinks', None) or []:
        sinks.append({'name': sink.name, 'primary': sink.primary, 'description': sink.description})
    return jsonify({'services': services, 'sinks': sinks})


@bp.route('/api/health/<service>/reset', methods=['POST'])
def reset_circuit(service):
    """Manually close a breaker after the upstream has recovered."""
    breakers = get_all_breakers()
    if service not in breakers:
        return jsonify({'error': f'Unknown service: {service}'}), 404
    breakers[service].reset()
    logger.info("Circuit '%s' reset via API", service)
    return jsonify({'ok': True, 'service': service, 'state': breakers[service].state})
