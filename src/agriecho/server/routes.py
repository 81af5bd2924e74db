"""
REST API endpoints of the AgriEcho server.

- POST /api/sos          - Record an SOS alert
- POST /api/voice-query  - Record a voice query and answer it
- GET  /api/sync         - Unresolved alerts, recent queries, active weather
- POST /api/weather      - Publish a weather alert
- GET  /api/health       - Liveness probe used by offline clients

All endpoints answer JSON. Failures use {"success": false, "error": ...}.
"""

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from agriecho.server.models import VALID_SEVERITIES, SOSAlert, VoiceQuery, WeatherAlert, db


api_bp = Blueprint('api', __name__, url_prefix='/api')


DEFAULT_ANSWER = "Thank you for your question. Our experts will respond soon."

# Keyword -> canned answer, first match wins
CANNED_ANSWERS = [
    ('weather', "Current weather is sunny with temperatures around 28°C. No rain expected today."),
    ('pest', "For pest control, try neem oil spray or consult our pest management guide in the knowledge base."),
]

RECENT_QUERY_LIMIT = 10


def answer_query(query):
    """Pick the canned answer for a query."""
    lowered = query.lower()
    for keyword, answer in CANNED_ANSWERS:
        if keyword in lowered:
            return answer
    return DEFAULT_ANSWER


def _error(message, status):
    return jsonify({
        'success': False,
        'error': message
    }), status


def _optional_string(data, field, max_length=255):
    """Validated optional string field, or raise ValueError."""
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str) or len(value) > max_length:
        raise ValueError(f'{field} must be a string with max {max_length} characters')
    return value


@api_bp.route('/sos', methods=['POST'])
def create_sos():
    """
    Record an SOS alert.

    Request Body:
        {
            "message": "Flooding in the north field",
            "location": "field-3",
            "severity": "high",
            "contact": "+254700000000"
        }

    Returns:
        200: {"success": true, "message": "SOS alert sent successfully", "id": 1}
        400: Missing message, bad severity or bad field types
        500: Database failure
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _error('Request body is required', 400)

    message = data.get('message')
    if not message or not isinstance(message, str):
        return _error('message is required', 400)

    severity = data.get('severity') or 'medium'
    if severity not in VALID_SEVERITIES:
        return _error(f'severity must be one of: {", ".join(VALID_SEVERITIES)}', 400)

    try:
        location = _optional_string(data, 'location')
        contact = _optional_string(data, 'contact')
    except ValueError as e:
        return _error(str(e), 400)

    alert = SOSAlert(message=message, location=location, severity=severity, contact=contact)
    try:
        db.session.add(alert)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f'Failed to store SOS alert: {e}')
        return _error(str(e), 500)

    current_app.logger.warning(f'SOS alert {alert.id}: {message} (location={location}, severity={severity})')

    return jsonify({
        'success': True,
        'message': 'SOS alert sent successfully',
        'id': alert.id
    })


@api_bp.route('/voice-query', methods=['POST'])
def create_voice_query():
    """
    Record a voice query and return its answer.

    Request Body:
        {"query": "Will it rain tomorrow?", "language": "en"}

    Returns:
        200: {"success": true, "response": "..."}
        400: Missing query
        500: Database failure
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _error('Request body is required', 400)

    query = data.get('query')
    if not query or not isinstance(query, str):
        return _error('query is required', 400)

    language = data.get('language') or 'en'
    if not isinstance(language, str) or len(language) > 8:
        return _error('language must be a short language code', 400)

    voice_query = VoiceQuery(query_text=query, language=language)
    try:
        db.session.add(voice_query)
        db.session.commit()

        response = answer_query(query)
        voice_query.response = response
        voice_query.processed = True
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f'Failed to store voice query: {e}')
        return _error(str(e), 500)

    return jsonify({
        'success': True,
        'response': response
    })


@api_bp.route('/sync', methods=['GET'])
def sync_data():
    """
    Everything an offline client refreshes when it reconnects.

    Returns:
        200: {"success": true, "data": {"sos": [...], "queries": [...], "weather": [...]}}
        500: Database failure
    """
    try:
        data = {
            'sos': [a.to_dict() for a in SOSAlert.get_unresolved()],
            'queries': [q.to_dict() for q in VoiceQuery.get_recent(RECENT_QUERY_LIMIT)],
            'weather': [w.to_dict() for w in WeatherAlert.get_active()],
        }
    except SQLAlchemyError as e:
        current_app.logger.error(f'Sync query failed: {e}')
        return _error(str(e), 500)

    return jsonify({
        'success': True,
        'data': data
    })


@api_bp.route('/weather', methods=['POST'])
def create_weather_alert():
    """
    Publish a weather alert.

    Request Body:
        {
            "location": "Nakuru",
            "alert": "Heavy rain expected",
            "severity": "high",
            "valid_until": "2026-01-15T18:00:00"
        }

    Returns:
        201: {"success": true, "alert": {...}}
        400: Missing alert text or bad valid_until
        500: Database failure
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _error('Request body is required', 400)

    text = data.get('alert')
    if not text or not isinstance(text, str):
        return _error('alert is required', 400)

    valid_until = data.get('valid_until')
    if valid_until is not None:
        try:
            valid_until = datetime.fromisoformat(valid_until)
        except (TypeError, ValueError):
            return _error('valid_until must be an ISO 8601 datetime', 400)
        if valid_until.tzinfo is not None:
            valid_until = valid_until.replace(tzinfo=None) - valid_until.utcoffset()

    try:
        location = _optional_string(data, 'location')
        severity = _optional_string(data, 'severity', max_length=16)
    except ValueError as e:
        return _error(str(e), 400)

    weather = WeatherAlert(location=location, alert=text, severity=severity, valid_until=valid_until)
    try:
        db.session.add(weather)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f'Failed to store weather alert: {e}')
        return _error(str(e), 500)

    return jsonify({
        'success': True,
        'alert': weather.to_dict()
    }), 201


@api_bp.route('/health', methods=['GET'])
def health():
    return jsonify({'status': 'healthy', 'service': 'agriecho'})
