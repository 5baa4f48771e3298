# api/admin.py
"""
Administrative API for the notification pipeline
"""

import asyncio
import logging

from flask import Blueprint, current_app, jsonify, request

from core.exceptions import (
    DiagnosticsError, NotificationDeliveryError, SettingsValidationError,
    StoreError, TemplateNotFoundError, TemplateValidationError
)
from core.smtp_transport import SMTPSettings
from middleware.security import require_admin_token

admin_bp = Blueprint('admin', __name__)
logger = logging.getLogger(__name__)


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _error(message: str, status: int):
    return jsonify({'success': False, 'error': message}), status


@admin_bp.errorhandler(TemplateValidationError)
@admin_bp.errorhandler(SettingsValidationError)
def handle_validation_error(e):
    return _error(str(e), 400)


@admin_bp.errorhandler(TemplateNotFoundError)
def handle_not_found(e):
    return _error(str(e), 404)


@admin_bp.errorhandler(StoreError)
def handle_store_error(e):
    logger.error(f"Storage error in admin API: {str(e)}")
    return _error(str(e), 500)


# Templates

@admin_bp.route('/email/templates', methods=['GET'])
@require_admin_token
def list_templates():
    templates = current_app.template_store.list_templates()
    return jsonify({'templates': [template.to_dict() for template in templates]})


@admin_bp.route('/email/templates', methods=['POST'])
@require_admin_token
def create_template():
    data = _json_body()
    if data is None:
        return _error('Request body must be a JSON object', 400)

    template = current_app.template_store.create_template(data)
    return jsonify({'success': True, 'template': template.to_dict()}), 201


@admin_bp.route('/email/templates/<template_id>', methods=['GET'])
@require_admin_token
def get_template(template_id):
    template = current_app.template_store.get_template(template_id)
    if template is None:
        return _error(f'Template {template_id} not found', 404)
    return jsonify({'template': template.to_dict()})


@admin_bp.route('/email/templates/<template_id>', methods=['PUT', 'PATCH'])
@require_admin_token
def update_template(template_id):
    data = _json_body()
    if data is None:
        return _error('Request body must be a JSON object', 400)

    template = current_app.template_store.update_template(template_id, data)
    return jsonify({'success': True, 'template': template.to_dict()})


@admin_bp.route('/email/templates/<template_id>', methods=['DELETE'])
@require_admin_token
def delete_template(template_id):
    current_app.template_store.delete_template(template_id)
    return jsonify({'success': True})


# Settings

@admin_bp.route('/email/settings', methods=['GET'])
@require_admin_token
def get_email_settings():
    return jsonify(current_app.settings_store.get_notification_settings())


@admin_bp.route('/email/settings', methods=['PUT'])
@require_admin_token
def save_email_settings():
    data = _json_body()
    if data is None:
        return _error('Request body must be a JSON object', 400)

    settings = current_app.settings_store.save_notification_settings(
        notifications_enabled=data.get('notifications_enabled'),
        admin_emails=data.get('admin_emails'),
    )
    return jsonify({'success': True, **settings})


@admin_bp.route('/email/smtp', methods=['GET'])
@require_admin_token
def get_smtp_settings():
    smtp = current_app.settings_store.smtp_settings()
    return jsonify(smtp.to_dict(include_password=False))


@admin_bp.route('/email/smtp', methods=['PUT'])
@require_admin_token
def save_smtp_settings():
    data = _json_body()
    if data is None:
        return _error('Request body must be a JSON object', 400)

    smtp = current_app.settings_store.save_smtp_settings(SMTPSettings.from_dict(data))
    return jsonify({'success': True, 'smtp': smtp.to_dict(include_password=False)})


# Operations

@admin_bp.route('/email/test', methods=['POST'])
@require_admin_token
def send_test_email():
    data = _json_body() or {}
    dispatcher = current_app.dispatcher

    try:
        report = asyncio.run(dispatcher.send_test_notification(
            message=data.get('message'),
            requested_by=data.get('requested_by'),
        ))
    except NotificationDeliveryError as e:
        payload = {'success': False, 'error': str(e)}
        if e.report is not None:
            payload['report'] = e.report.to_dict()
        return jsonify(payload), 502

    return jsonify({'success': True, 'report': report.to_dict()})


@admin_bp.route('/email/diagnosis', methods=['GET'])
@require_admin_token
def diagnose_email_system():
    try:
        diagnosis = current_app.diagnostics.diagnose()
    except DiagnosticsError as e:
        return _error(e.reason, 503)

    return jsonify({'success': True, 'diagnosis': diagnosis.to_dict()})


@admin_bp.route('/activity-logs', methods=['GET'])
@require_admin_token
def list_activity_logs():
    default_limit = current_app.config['ACTIVITY_LOG_PAGE_SIZE']
    max_limit = current_app.config['ACTIVITY_LOG_MAX_PAGE_SIZE']
    limit = request.args.get('limit', default_limit, type=int)
    limit = max(1, min(limit, max_limit))

    entries = current_app.activity_log.recent(limit=limit, action=request.args.get('action'))
    return jsonify({'logs': [entry.to_dict() for entry in entries], 'limit': limit})
