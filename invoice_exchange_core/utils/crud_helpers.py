"""
Generic CRUD helpers shared by the billing and credential persistence code.

Every helper commits its own unit of work and converts driver failures into
BaseError(DATABASE_ERROR) after rolling back.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from ..exceptions import BaseError, ErrorCode, not_found
from ..utils.logger import get_logger

T = TypeVar("T")


def _apply_filters(query, model_class, filters: Optional[Dict[str, Any]]):
    if filters:
        for key, value in filters.items():
            if hasattr(model_class, key) and value is not None:
                query = query.filter(getattr(model_class, key) == value)
    return query


def create_record(session: Session, model_class: Type[T], data: Dict[str, Any]) -> T:
    """
    Generic create operation for any model.

    Args:
        session: Database session
        model_class: SQLAlchemy model class
        data: Column values

    Returns:
        Created record instance

    Raises:
        BaseError: If creation fails
    """
    logger = get_logger()

    try:
        if hasattr(model_class, "created_at"):
            data["created_at"] = datetime.now(timezone.utc)
        if hasattr(model_class, "updated_at"):
            data["updated_at"] = datetime.now(timezone.utc)

        record = model_class(**data)
        session.add(record)
        session.commit()

        logger.info(
            f"Created {model_class.__name__}",
            extra={"model": model_class.__name__, "record_id": getattr(record, "id", None)},
        )

        return record

    except Exception as e:
        session.rollback()
        logger.error(
            f"Failed to create {model_class.__name__}: {str(e)}",
            extra={"model": model_class.__name__, "error": str(e)},
        )
        raise BaseError(
            f"Failed to create {model_class.__name__}: {str(e)}",
            error_code=ErrorCode.DATABASE_ERROR,
            cause=e,
        )


def get_record(session: Session, model_class: Type[T], filters: Dict[str, Any]) -> Optional[T]:
    """Return the first record matching all non-None filters, or None."""
    query = _apply_filters(session.query(model_class), model_class, filters)
    return query.first()


def get_record_by_id(session: Session, model_class: Type[T], record_id: str) -> Optional[T]:
    return get_record(session, model_class, {"id": record_id})


def update_record(
    session: Session,
    model_class: Type[T],
    record_id: str,
    data: Dict[str, Any],
) -> T:
    """
    Generic update operation for any model.

    None values in data are skipped, so callers can pass partial updates.

    Raises:
        RepositoryError: If the record does not exist
        BaseError: If update fails
    """
    logger = get_logger()

    record = get_record_by_id(session, model_class, record_id)
    if not record:
        raise not_found(model_class.__name__, record_id=record_id)

    try:
        for key, value in data.items():
            if hasattr(record, key) and value is not None:
                setattr(record, key, value)

        if hasattr(record, "updated_at"):
            record.updated_at = datetime.now(timezone.utc)

        session.commit()

        logger.info(
            f"Updated {model_class.__name__}",
            extra={"model": model_class.__name__, "record_id": record_id},
        )

        return record

    except Exception as e:
        session.rollback()
        logger.error(
            f"Failed to update {model_class.__name__}: {str(e)}",
            extra={"model": model_class.__name__, "record_id": record_id, "error": str(e)},
        )
        raise BaseError(
            f"Failed to update {model_class.__name__}: {str(e)}",
            error_code=ErrorCode.DATABASE_ERROR,
            cause=e,
        )


def delete_record(session: Session, model_class: Type[T], record_id: str) -> bool:
    """
    Generic delete operation for any model.

    Returns:
        True if deleted, False if not found
    """
    logger = get_logger()

    try:
        record = get_record_by_id(session, model_class, record_id)
        if not record:
            return False

        session.delete(record)
        session.commit()

        logger.info(
            f"Deleted {model_class.__name__}",
            extra={"model": model_class.__name__, "record_id": record_id},
        )

        return True

    except Exception as e:
        session.rollback()
        logger.error(
            f"Failed to delete {model_class.__name__}: {str(e)}",
            extra={"model": model_class.__name__, "record_id": record_id, "error": str(e)},
        )
        raise BaseError(
            f"Failed to delete {model_class.__name__}: {str(e)}",
            error_code=ErrorCode.DATABASE_ERROR,
            cause=e,
        )


def list_records(
    session: Session,
    model_class: Type[T],
    filters: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    order_by: Optional[str] = None,
) -> List[T]:
    """
    Generic list operation for any model.

    Ordered by order_by when given, otherwise newest first when the model is timestamped.
    """
    query = _apply_filters(session.query(model_class), model_class, filters)

    if order_by and hasattr(model_class, order_by):
        query = query.order_by(getattr(model_class, order_by))
    elif hasattr(model_class, "created_at"):
        query = query.order_by(model_class.created_at.desc())  # type: ignore[attr-defined]

    if offset:
        query = query.offset(offset)
    if limit:
        query = query.limit(limit)

    return query.all()


def count_records(
    session: Session, model_class: Type[T], filters: Optional[Dict[str, Any]] = None
) -> int:
    return _apply_filters(session.query(model_class), model_class, filters).count()
