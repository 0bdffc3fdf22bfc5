# Overview: Constraint-driven consistency primitives shared by the service layer:
# retry with backoff, optimistic version guard, and safe upsert.

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, TypeVar

from flask import current_app, has_app_context
from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from app.time_utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE codes
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
SERIALIZATION_FAILURE = "40001"
LOCK_NOT_AVAILABLE = "55P03"

DEFAULT_RETRYABLE_CODES = frozenset({UNIQUE_VIOLATION, FOREIGN_KEY_VIOLATION})
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 0.1  # seconds

_CODE_IN_MESSAGE = re.compile(r"error code: (\w+)")


def error_code(exc: BaseException) -> str | None:
    """
    Extract a SQLSTATE-style code from a storage error.

    Postgres drivers expose it directly (pgcode / sqlstate). SQLite only gives
    a message, so constraint failures are mapped onto the equivalent codes.
    Returns None when the error is not classifiable.
    """
    if isinstance(exc, StaleDataError):
        return SERIALIZATION_FAILURE

    orig = exc.orig if isinstance(exc, DBAPIError) and exc.orig is not None else exc

    for attr in ("pgcode", "sqlstate"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)

    # SQLAlchemy errors carry their own doc-link `code`; only trust plain ones.
    if not isinstance(exc, SQLAlchemyError):
        code = getattr(exc, "code", None)
        if isinstance(code, str) and code:
            return code

    message = str(orig)
    match = _CODE_IN_MESSAGE.search(message)
    if match:
        return match.group(1)

    errorname = getattr(orig, "sqlite_errorname", "") or ""
    if (
        errorname in ("SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY")
        or "UNIQUE constraint failed" in message
        or "duplicate key value violates unique constraint" in message
    ):
        return UNIQUE_VIOLATION
    if errorname == "SQLITE_CONSTRAINT_FOREIGNKEY" or "FOREIGN KEY constraint failed" in message:
        return FOREIGN_KEY_VIOLATION
    if isinstance(exc, OperationalError) and "database is locked" in message:
        return LOCK_NOT_AVAILABLE
    return None


def is_unique_violation(exc: BaseException) -> bool:
    return error_code(exc) == UNIQUE_VIOLATION


def is_foreign_key_violation(exc: BaseException) -> bool:
    return error_code(exc) == FOREIGN_KEY_VIOLATION


def _retry_settings(max_retries: int | None, base_delay: float | None) -> tuple[int, float]:
    if has_app_context():
        config = current_app.config
        if max_retries is None:
            max_retries = config.get("RETRY_MAX_RETRIES", DEFAULT_MAX_RETRIES)
        if base_delay is None:
            base_delay = config.get("RETRY_BASE_DELAY", DEFAULT_BASE_DELAY)
    if max_retries is None:
        max_retries = DEFAULT_MAX_RETRIES
    if base_delay is None:
        base_delay = DEFAULT_BASE_DELAY
    return max(int(max_retries), 0), max(float(base_delay), 0.0)


def _rollback_session() -> None:
    if has_app_context():
        db.session.rollback()


def run_with_retry(
    func: Callable[[], T],
    *,
    max_retries: int | None = None,
    base_delay: float | None = None,
    retryable_codes: Iterable[str] | None = None,
) -> T:
    """
    Execute a storage operation, retrying classified conflicts with backoff.

    Runs `func` at most max_retries + 1 times, sleeping base_delay * 2**attempt
    between attempts. Errors whose code is not in `retryable_codes` (default:
    unique and foreign-key violations) are re-raised immediately; after the
    last attempt the last error is re-raised.

    NOTE: Retrying does not make an operation idempotent. `func` must be safe
    to re-run after a partial failure.
    """
    max_retries, base_delay = _retry_settings(max_retries, base_delay)
    codes = DEFAULT_RETRYABLE_CODES if retryable_codes is None else frozenset(retryable_codes)

    for attempt in range(max_retries + 1):
        try:
            return func()
        except Exception as exc:
            if isinstance(exc, SQLAlchemyError):
                _rollback_session()
            code = error_code(exc)
            if code not in codes or attempt >= max_retries:
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(
                "Retryable storage error (code=%s) on attempt %d/%d; retrying in %.3fs",
                code,
                attempt + 1,
                max_retries + 1,
                delay,
            )
            time.sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover


def commit_with_retry(**retry_options) -> None:
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    run_with_retry(_op, **retry_options)


# =============================================================================
# Optimistic version guard
# =============================================================================

class UpdateOutcome(str, Enum):
    UPDATED = "updated"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class VersionedUpdate:
    outcome: UpdateOutcome
    entity: Any = None
    stored_version: int | None = None

    @property
    def updated(self) -> bool:
        return self.outcome is UpdateOutcome.UPDATED

    @property
    def conflict(self) -> bool:
        return self.outcome is UpdateOutcome.CONFLICT


def optimistic_update(
    model,
    entity_id: int,
    updates: dict[str, Any],
    expected_version: int | None = None,
) -> VersionedUpdate:
    """
    Apply `updates` to one row of a model carrying a `version_id` column.

    - expected_version None: unconditional update.
    - expected_version differs from the stored version: CONFLICT, nothing written.
    - otherwise: compare-and-set on the version, which is then incremented.
      A writer that commits between our read and our write also yields CONFLICT.

    Hard storage errors propagate.
    """
    stored = (
        db.session.query(model.version_id)
        .filter(model.id == entity_id)
        .scalar()
    )
    if stored is None:
        return VersionedUpdate(UpdateOutcome.NOT_FOUND)

    if expected_version is not None and int(expected_version) != stored:
        return VersionedUpdate(UpdateOutcome.CONFLICT, stored_version=stored)

    values = {k: v for k, v in updates.items() if k not in ("id", "version_id")}
    values["version_id"] = model.version_id + 1
    if hasattr(model, "updated_at"):
        values["updated_at"] = utcnow()

    stmt = update(model).where(model.id == entity_id)
    if expected_version is not None:
        stmt = stmt.where(model.version_id == stored)
    stmt = stmt.values(**values).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    if not result.rowcount:
        db.session.rollback()
        current = (
            db.session.query(model.version_id)
            .filter(model.id == entity_id)
            .scalar()
        )
        if current is None:
            return VersionedUpdate(UpdateOutcome.NOT_FOUND)
        logger.info("Version conflict on %s id=%s (expected %s, now %s)",
                    model.__tablename__, entity_id, expected_version, current)
        return VersionedUpdate(UpdateOutcome.CONFLICT, stored_version=current)

    db.session.commit()
    entity = db.session.get(model, entity_id)
    return VersionedUpdate(UpdateOutcome.UPDATED, entity=entity, stored_version=entity.version_id)


# =============================================================================
# Safe upsert
# =============================================================================

@dataclass(frozen=True)
class UpsertResult:
    record: Any
    created: bool


def safe_upsert(
    model,
    data: dict[str, Any],
    unique_key: str | list[str] | tuple[str, ...],
    update_fields: Iterable[str] | None = None,
) -> UpsertResult:
    """
    Update the row matching `unique_key`, or insert `data` when none exists.

    Only `update_fields` (default: every non-key field present in `data`) are
    written on update; key fields never change. Timestamps are refreshed.

    An insert that loses a race to a concurrent insert raises the unique
    violation. Wrap the call in run_with_retry to absorb it: the next attempt
    finds the winner's row and updates it.
    """
    keys = [unique_key] if isinstance(unique_key, str) else list(unique_key)
    if not keys:
        raise ValueError("unique_key is required")
    missing = [key for key in keys if data.get(key) is None]
    if missing:
        raise ValueError(f"Missing unique key value(s): {', '.join(missing)}")

    existing = db.session.query(model).filter_by(**{key: data[key] for key in keys}).first()
    now = utcnow()

    if existing is not None:
        fields = list(update_fields) if update_fields is not None else [k for k in data if k not in keys]
        for field in fields:
            if field in keys or field not in data:
                continue
            setattr(existing, field, data[field])
        if hasattr(model, "updated_at") and "updated_at" not in data:
            existing.updated_at = now
        db.session.commit()
        return UpsertResult(record=existing, created=False)

    record = model(**data)
    if hasattr(model, "created_at") and data.get("created_at") is None:
        record.created_at = now
    if hasattr(model, "updated_at") and data.get("updated_at") is None:
        record.updated_at = now
    db.session.add(record)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    return UpsertResult(record=record, created=True)
