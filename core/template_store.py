# core/template_store.py
"""
CRUD over named email templates
"""

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from core.database_models import EmailTemplate, utcnow
from core.exceptions import StoreError, TemplateNotFoundError, TemplateValidationError
from core.template_engine import extract_placeholders

logger = logging.getLogger(__name__)

MAX_TEMPLATE_NAME_LENGTH = 100
MAX_SUBJECT_LENGTH = 255


def _parse_variables(raw: Any) -> List[str]:
    """Accept a list or a comma separated string; drop blanks and duplicates"""
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(',')
    if not isinstance(raw, (list, tuple)):
        raise TemplateValidationError("variables must be a list of names")

    variables = []
    for item in raw:
        name = str(item).strip() if item is not None else ''
        if name and name not in variables:
            variables.append(name)
    return variables


def _required_text(data: Mapping[str, Any], key: str, label: str, max_length: Optional[int] = None) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise TemplateValidationError(f"{label} is required")
    value = value.strip()
    if max_length and len(value) > max_length:
        raise TemplateValidationError(f"{label} must be at most {max_length} characters")
    return value


def _parse_template_id(template_id: Any) -> Optional[uuid.UUID]:
    if isinstance(template_id, uuid.UUID):
        return template_id
    try:
        return uuid.UUID(str(template_id))
    except (TypeError, ValueError):
        return None


class TemplateStore:
    """Template persistence. Rows are returned detached from their session."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def clean_template_data(self, data: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
        """
        Validate an incoming template payload.

        With ``partial`` only the supplied fields are checked.
        """
        if not isinstance(data, Mapping):
            raise TemplateValidationError("Template payload must be an object")

        cleaned: Dict[str, Any] = {}
        if not partial or 'template_name' in data:
            cleaned['template_name'] = _required_text(data, 'template_name', 'Template name', MAX_TEMPLATE_NAME_LENGTH)
        if not partial or 'subject' in data:
            cleaned['subject'] = _required_text(data, 'subject', 'Subject', MAX_SUBJECT_LENGTH)
        if not partial or 'body_template' in data:
            cleaned['body_template'] = _required_text(data, 'body_template', 'Body')
        if not partial or 'variables' in data:
            cleaned['variables'] = _parse_variables(data.get('variables'))
        if 'is_active' in data:
            if not isinstance(data['is_active'], bool):
                raise TemplateValidationError("is_active must be a boolean")
            cleaned['is_active'] = data['is_active']
        elif not partial:
            cleaned['is_active'] = True

        return cleaned

    def _warn_undeclared(self, template: EmailTemplate) -> None:
        used = extract_placeholders(template.subject) + extract_placeholders(template.body_template)
        undeclared = [name for name in dict.fromkeys(used) if name not in (template.variables or [])]
        if undeclared:
            logger.warning(f"Template '{template.template_name}' uses undeclared placeholders: {undeclared}")

    def list_templates(self) -> List[EmailTemplate]:
        try:
            with self.session_factory() as session:
                return list(session.execute(
                    select(EmailTemplate).order_by(EmailTemplate.template_name, EmailTemplate.created_at)
                ).scalars())
        except SQLAlchemyError as e:
            logger.error(f"Failed to list templates: {str(e)}")
            raise StoreError("Failed to list templates") from e

    def get_template(self, template_id: Any) -> Optional[EmailTemplate]:
        parsed_id = _parse_template_id(template_id)
        if parsed_id is None:
            return None
        try:
            with self.session_factory() as session:
                return session.get(EmailTemplate, parsed_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load template {template_id}: {str(e)}")
            raise StoreError("Failed to load template") from e

    def get_active_template(self, template_name: str) -> Optional[EmailTemplate]:
        """First active template with this name, oldest first"""
        try:
            with self.session_factory() as session:
                return session.execute(
                    select(EmailTemplate)
                    .where(EmailTemplate.template_name == template_name, EmailTemplate.is_active.is_(True))
                    .order_by(EmailTemplate.created_at)
                    .limit(1)
                ).scalars().first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up template '{template_name}': {str(e)}")
            raise StoreError(f"Failed to look up template '{template_name}'") from e

    def count_active(self) -> int:
        try:
            with self.session_factory() as session:
                return session.execute(
                    select(func.count()).select_from(EmailTemplate).where(EmailTemplate.is_active.is_(True))
                ).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Failed to count active templates: {str(e)}")
            raise StoreError("Failed to count active templates") from e

    def create_template(self, data: Mapping[str, Any]) -> EmailTemplate:
        cleaned = self.clean_template_data(data)
        template = EmailTemplate(**cleaned)
        try:
            with self.session_factory() as session, session.begin():
                session.add(template)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create template: {str(e)}")
            raise StoreError("Failed to create template") from e

        self._warn_undeclared(template)
        logger.info(f"Template created: {template.template_name} ({template.id})")
        return template

    def update_template(self, template_id: Any, data: Mapping[str, Any]) -> EmailTemplate:
        cleaned = self.clean_template_data(data, partial=True)
        parsed_id = _parse_template_id(template_id)
        if parsed_id is None:
            raise TemplateNotFoundError(f"Template {template_id} not found")

        try:
            with self.session_factory() as session, session.begin():
                template = session.get(EmailTemplate, parsed_id)
                if template is None:
                    raise TemplateNotFoundError(f"Template {template_id} not found")
                for key, value in cleaned.items():
                    setattr(template, key, value)
                template.updated_at = utcnow()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update template {template_id}: {str(e)}")
            raise StoreError("Failed to update template") from e

        self._warn_undeclared(template)
        logger.info(f"Template updated: {template.template_name} ({template.id})")
        return template

    def delete_template(self, template_id: Any) -> None:
        parsed_id = _parse_template_id(template_id)
        if parsed_id is None:
            raise TemplateNotFoundError(f"Template {template_id} not found")

        try:
            with self.session_factory() as session, session.begin():
                template = session.get(EmailTemplate, parsed_id)
                if template is None:
                    raise TemplateNotFoundError(f"Template {template_id} not found")
                session.delete(template)
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete template {template_id}: {str(e)}")
            raise StoreError("Failed to delete template") from e

        logger.info(f"Template deleted: {template_id}")
