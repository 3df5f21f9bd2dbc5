"""
Conversion API routes

Entry points for the storefront (client-path tracking, backup trigger on
booking confirmation) and for operators (reconciliation, manual upload,
tracking health).
"""

import hmac
from functools import wraps

from flask import Blueprint, jsonify, request, current_app, abort

from logging_config import get_logger, security_logger
from services.enums import ConversionAction

logger = get_logger(__name__)

conversion_bp = Blueprint('conversions', __name__)


def require_api_key(f):
    """Decorator to check the shared X-API-Key header."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('CONVERSIONS_API_KEY')
        if not expected:
            logger.error("CONVERSIONS_API_KEY is not configured")
            abort(500)
        provided = request.headers.get('X-API-Key', '')
        if not hmac.compare_digest(provided.encode(), expected.encode()):
            security_logger.log_api_key_rejection(request.path, request.remote_addr)
            abort(403)
        return f(*args, **kwargs)
    return decorated_function


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


@conversion_bp.route('/api/conversions/validate-and-convert', methods=['POST'])
@require_api_key
def validate_and_convert():
    """Run (or queue) the server-side backup conversion for a booking"""
    data = _json_body()
    if not data or not data.get('booking_id'):
        return jsonify({'success': False, 'error': 'booking_id is required'}), 400

    booking_id = str(data['booking_id'])

    if current_app.config.get('BACKUP_CONVERSIONS_ASYNC', True):
        from tasks.conversion_tasks import upload_backup_conversion
        task = upload_backup_conversion.delay(booking_id)
        logger.info("Backup conversion queued", booking_id=booking_id, task_id=task.id)
        return jsonify({'success': True, 'queued': True, 'task_id': task.id}), 202

    backup_service = current_app.services.get('backup_conversion')
    result = backup_service.validate_and_convert(booking_id)
    if result.success:
        return jsonify(result.to_dict()), 200
    status = 404 if result.booking_data is None and result.error == 'Booking not found' else 422
    return jsonify(result.to_dict()), status


@conversion_bp.route('/api/conversions/reconcile', methods=['POST'])
@require_api_key
def reconcile():
    """Compare client and server attempt logs over a date range"""
    data = _json_body() or {}
    start_date = data.get('start_date')
    if not start_date:
        return jsonify({'success': False, 'error': 'start_date is required'}), 400

    reconciliation_service = current_app.services.get('reconciliation')
    try:
        result = reconciliation_service.reconcile(start_date, data.get('end_date'))
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify({'success': True, 'reconciliation': result.to_dict()}), 200


@conversion_bp.route('/api/conversions/manual', methods=['POST'])
@require_api_key
def manual_conversion():
    """Upload an operator-supplied purchase conversion"""
    data = _json_body()
    if not data:
        return jsonify({'success': False, 'error': 'JSON body is required'}), 400

    backup_service = current_app.services.get('backup_conversion')
    result = backup_service.upload_manual_conversion(data)
    if result.is_failure:
        status = 400 if result.error_code == 'VALIDATION_ERROR' else 502
        return jsonify(result.to_dict()), status

    return jsonify(result.to_dict()), 200


@conversion_bp.route('/api/conversions/track/<action>', methods=['POST'])
@require_api_key
def track(action):
    """
    Client-path tracking for one funnel event.

    Body: {"event": {...}, "options": {"marketing_consent": true, ...}}.
    Delivery runs in the background unless ?wait=1 is given.
    """
    try:
        ConversionAction(action)
    except ValueError:
        return jsonify({'success': False, 'error': f"Unknown action '{action}'"}), 404

    data = _json_body()
    if data is None:
        return jsonify({'success': False, 'error': 'JSON body is required'}), 400

    dispatcher = current_app.services.get('conversion_dispatcher')
    event_input = data.get('event') or {}
    options = data.get('options') or {}

    if request.args.get('wait') == '1':
        tracked = dispatcher.track(action, event_input, options)
        return jsonify({'success': tracked}), 200

    dispatcher.submit(action, event_input, options)
    return jsonify({'success': True, 'accepted': True}), 202


@conversion_bp.route('/api/monitoring/health', methods=['GET'])
@require_api_key
def monitoring_health():
    """Tracking health summary: status, last checks, alerts and metrics"""
    monitor = current_app.services.get('tracking_monitor')
    if request.args.get('refresh') == '1':
        monitor.run_basic_check()
    return jsonify(monitor.get_health_status()), 200
