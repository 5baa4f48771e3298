# api/send_email.py
"""
Email delivery function

HTTP boundary of the delivery transport: accepts one message plus SMTP
settings and attempts the send with the configured backend. Open to any
origin; preflight requests are answered by flask-cors.
"""

import asyncio
import logging
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request
from flask_cors import cross_origin

from core.smtp_transport import EmailMessage, SMTPSettings

send_email_bp = Blueprint('send_email', __name__)
logger = logging.getLogger(__name__)

CORS_ALLOW_HEADERS = ['authorization', 'x-client-info', 'apikey', 'content-type']
REQUIRED_FIELDS = ('to', 'subject', 'html')


def _error(message: str, status: int):
    return jsonify({'success': False, 'error': message}), status


@send_email_bp.route('/send-email', methods=['POST', 'OPTIONS'])
@cross_origin(origins='*', send_wildcard=True, allow_headers=CORS_ALLOW_HEADERS, methods=['POST', 'OPTIONS'])
def send_email():
    """Deliver a single message"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _error('Request body must be a JSON object', 400)

    if any(not isinstance(data.get(key), str) or not data.get(key) for key in REQUIRED_FIELDS):
        return _error('Missing required fields: to, subject, html', 400)

    smtp_data = data.get('smtp')
    if not isinstance(smtp_data, dict) or any(
        not isinstance(smtp_data.get(key), str) or not smtp_data[key].strip() for key in ('host', 'user')
    ):
        return _error('Invalid SMTP configuration', 400)

    smtp = SMTPSettings.from_dict(smtp_data)
    message = EmailMessage(recipient=data['to'], subject=data['subject'], html=data['html'])

    logger.info(f"Delivery requested for {message.recipient} via {smtp.host}:{smtp.port}")

    try:
        result = asyncio.run(current_app.delivery_backend.send(message, smtp))
    except Exception as e:
        logger.error(f"Delivery backend raised for {message.recipient}: {str(e)}", exc_info=True)
        return _error(str(e) or 'Delivery failed', 500)

    if not result.success:
        logger.warning(f"Delivery to {message.recipient} failed: {result.error}")
        return _error(result.error or 'Delivery failed', 500)

    return jsonify({
        'success': True,
        'message': 'Email sent successfully',
        'details': {
            'to': message.recipient,
            'subject': message.subject,
            'smtp_host': smtp.host,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }
    }), 200
