from __future__ import annotations

from visafirma.core.config import settings
from visafirma.core.exceptions import ValidationError
from visafirma.models.document import Document
from visafirma.schemas.document import DocumentFilters


def validate_pagination(page: int, limit: int | None) -> tuple[int, int]:
    limit = settings.pending_default_limit if limit is None else limit
    if page < 1:
        raise ValidationError("La página debe ser mayor o igual a 1")
    if limit < 1 or limit > settings.pending_max_limit:
        raise ValidationError(f"El límite debe estar entre 1 y {settings.pending_max_limit}")
    return page, limit


def apply_document_filters(statement, filters: DocumentFilters | None):
    statement = statement.where(Document.deleted_at.is_(None))
    if not filters:
        return statement
    if filters.start_date and filters.end_date and filters.start_date > filters.end_date:
        raise ValidationError("La fecha de inicio no puede ser posterior a la fecha de término")
    if filters.start_date:
        statement = statement.where(Document.created_at >= filters.start_date)
    if filters.end_date:
        statement = statement.where(Document.created_at <= filters.end_date)
    if filters.name:
        statement = statement.where(Document.name.ilike(f"%{filters.name}%"))
    return statement
