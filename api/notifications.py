# api/notifications.py
"""
Registration notification hook

Called by the public registration flow after a registration is stored.
Administrator fan-out failures are logged and never reported to the caller.
"""

import asyncio
import logging

from flask import Blueprint, current_app, jsonify, request

from services.notifications import RegistrationEvent

notifications_bp = Blueprint('notifications', __name__)
logger = logging.getLogger(__name__)

REQUIRED_REGISTRATION_FIELDS = ('name', 'phone', 'telegram')


@notifications_bp.route('/registrations/notify', methods=['POST'])
def notify_registration():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400

    event = RegistrationEvent.from_dict(data)
    missing = [name for name in REQUIRED_REGISTRATION_FIELDS if not getattr(event, name)]
    if not event.course_name:
        missing.append('courseName')
    if missing:
        return jsonify({'error': f"Missing required fields: {', '.join(missing)}"}), 400

    report = asyncio.run(current_app.dispatcher.notify_quietly(event))
    if report is not None:
        logger.info(f"Registration notification for {event.name}: "
                    f"{report.sent_count} sent, {report.failed_count} failed")

    return jsonify({'accepted': True}), 202
