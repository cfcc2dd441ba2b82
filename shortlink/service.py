from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import DataError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from shortlink.config import settings
from shortlink.errors import (
    DuplicatePathError,
    NotFoundError,
    ReservedPathError,
    StoreUnavailableError,
    ValidationError,
)
from shortlink.models import Mapping, utcnow
from shortlink.schemas import (
    PRESERVED_FIELDS,
    ExpiryReport,
    MappingCreate,
    MappingOut,
    MappingPage,
    MappingUpdate,
    Resolution,
    ResolveState,
)

logger = logging.getLogger(__name__)

# Paths under the admin API namespace can never be reached by a redirect.
RESERVED_PREFIXES = ("api/",)

MAX_PATH_LENGTH = 255

_datetime_adapter = TypeAdapter(datetime)


@contextmanager
def store_errors(db: Session) -> Iterator[None]:
    """
    Roll back and re-raise connection-level failures as StoreUnavailableError.
    Values the store refuses (too long, out of range) become ValidationError.
    Integrity errors pass through for the caller to interpret.
    """
    try:
        yield
    except DataError as e:
        db.rollback()
        raise ValidationError(f"Value rejected by the mapping store: {e.orig}") from e
    except (OperationalError, InterfaceError) as e:
        db.rollback()
        logger.exception("mapping store unavailable")
        raise StoreUnavailableError("Mapping store is unavailable") from e


def is_reserved(path: str) -> bool:
    return path in settings.reserved_paths or path.startswith(RESERVED_PREFIXES)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_expiry(value: datetime | str | None) -> datetime | None:
    """
    Accepts ISO 8601 datetimes (with or without offset) and plain dates.
    Returns naive UTC; naive input is taken as UTC.
    """
    if value is None:
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            value = _datetime_adapter.validate_python(value.strip())
        except PydanticValidationError:
            raise ValidationError(f"Invalid expiry date: {value!r}") from None
    return to_utc_naive(value)


def validate_path(path: str | None) -> str:
    if not isinstance(path, str) or not path.strip():
        raise ValidationError("path must be a non-empty string")
    if any(ch.isspace() for ch in path):
        raise ValidationError("path must not contain whitespace")
    if len(path) > MAX_PATH_LENGTH:
        raise ValidationError(f"path must be at most {MAX_PATH_LENGTH} characters")
    if is_reserved(path):
        raise ReservedPathError(f"'{path}' is reserved by the system, choose another path")
    return path


def validate_wechat(is_wechat: bool, qr_code_data: str | None) -> None:
    if is_wechat and not qr_code_data:
        raise ValidationError("WeChat mappings require qrCodeData")


def list_mappings(db: Session, page: int, page_size: int) -> MappingPage:
    if page < 1 or page_size < 1:
        raise ValidationError("page and pageSize must be >= 1")

    visible = and_(
        Mapping.path.not_in(sorted(settings.reserved_paths)),
        *(~Mapping.path.startswith(prefix, autoescape=True) for prefix in RESERVED_PREFIXES),
    )

    with store_errors(db):
        total = db.scalar(select(func.count()).select_from(Mapping).where(visible)) or 0
        rows = db.scalars(
            select(Mapping)
            .where(visible)
            .order_by(Mapping.created_at.desc(), Mapping.path)
            .limit(page_size)
            .offset((page - 1) * page_size)
        ).all()

    return MappingPage(
        records=[MappingOut.model_validate(row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
    )


def create_mapping(db: Session, data: MappingCreate) -> Mapping:
    """
    Inserts one mapping. created_at is assigned here, never by the caller.
    """
    path = validate_path(data.path)
    if not isinstance(data.target, str) or not data.target.strip():
        raise ValidationError("target must be a non-empty string")
    expiry = parse_expiry(data.expiry)
    validate_wechat(data.is_wechat, data.qr_code_data)

    with store_errors(db):
        if db.get(Mapping, path) is not None:
            raise DuplicatePathError(f"path '{path}' already exists")

        row = Mapping(
            path=path,
            target=data.target,
            name=data.name,
            expiry=expiry,
            enabled=data.enabled,
            created_at=utcnow(),
            is_wechat=data.is_wechat,
            qr_code_data=data.qr_code_data,
            image_url=data.image_url,
            image_base64=data.image_base64,
            image_alt=data.image_alt,
        )
        db.add(row)
        try:
            db.commit()
        except IntegrityError as e:
            # Lost a race against a concurrent insert of the same path.
            db.rollback()
            raise DuplicatePathError(f"path '{path}' already exists") from e
        db.refresh(row)

    logger.info("created mapping %s -> %s", row.path, row.target)
    return row


def update_mapping(db: Session, original_path: str, patch: MappingUpdate) -> Mapping:
    """
    Replaces the mapping stored at original_path, possibly under a new path.

    Image / QR fields the patch leaves unspecified keep their stored values.
    The row is rewritten (and re-keyed) by a single UPDATE statement, so a
    rename never exposes both paths or neither.
    """
    if not original_path:
        raise ValidationError("originalPath must be a non-empty string")
    if is_reserved(original_path):
        raise ReservedPathError(f"'{original_path}' is reserved by the system and cannot be changed")
    new_path = validate_path(patch.path)
    if not isinstance(patch.target, str) or not patch.target.strip():
        raise ValidationError("target must be a non-empty string")
    expiry = parse_expiry(patch.expiry)

    with store_errors(db):
        existing = db.get(Mapping, original_path)
        if existing is None:
            raise NotFoundError(f"mapping '{original_path}' does not exist")

        merged = {
            field: getattr(patch, field) if patch.is_specified(field) else getattr(existing, field)
            for field in PRESERVED_FIELDS
        }
        validate_wechat(patch.is_wechat, merged["qr_code_data"])

        if new_path != original_path and db.get(Mapping, new_path) is not None:
            raise DuplicatePathError(f"path '{new_path}' already exists")

        stmt = (
            update(Mapping)
            .where(Mapping.path == original_path)
            .values(
                path=new_path,
                target=patch.target,
                name=patch.name,
                expiry=expiry,
                enabled=patch.enabled,
                is_wechat=patch.is_wechat,
                **merged,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.execute(stmt)
            if result.rowcount == 0:
                db.rollback()
                raise NotFoundError(f"mapping '{original_path}' does not exist")
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise DuplicatePathError(f"path '{new_path}' already exists") from e

        db.expunge(existing)
        row = db.get(Mapping, new_path)

    logger.info("updated mapping %s -> %s", original_path, new_path)
    return row


def delete_mapping(db: Session, path: str) -> None:
    """Deleting a path that does not exist is a no-op."""
    if not isinstance(path, str) or not path:
        raise ValidationError("path must be a non-empty string")
    if is_reserved(path):
        raise ReservedPathError(f"'{path}' is reserved by the system and cannot be deleted")

    with store_errors(db):
        result = db.execute(delete(Mapping).where(Mapping.path == path))
        db.commit()

    if result.rowcount:
        logger.info("deleted mapping %s", path)


def resolve(db: Session, path: str, now: datetime | None = None) -> Resolution:
    """
    Redirect hot path. Disabled mappings resolve as not found; an expiry in
    the past (to the instant) resolves as expired.
    """
    now = to_utc_naive(now) if now is not None else utcnow()

    with store_errors(db):
        row = db.get(Mapping, path)

    if row is None or not row.enabled:
        return Resolution(state=ResolveState.NOT_FOUND)

    mapping = MappingOut.model_validate(row)
    if row.expiry is not None and row.expiry < now:
        return Resolution(state=ResolveState.EXPIRED, mapping=mapping)

    return Resolution(state=ResolveState.ACTIVE, target=row.target, mapping=mapping)


def expiry_window(now: datetime, tz: ZoneInfo, days_ahead: int) -> tuple[datetime, datetime]:
    """
    Day-granular bounds in the evaluating timezone, returned as naive UTC:
      start = 00:00:00 today
      end   = 23:59:59.999999 of the day `days_ahead` days later
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    today = now.astimezone(tz).date()
    start = datetime.combine(today, time.min, tzinfo=tz)
    end = datetime.combine(today + timedelta(days=days_ahead), time.max, tzinfo=tz)
    return to_utc_naive(start), to_utc_naive(end)


def classify_expiring(db: Session, now: datetime | None = None, tz: str | None = None) -> ExpiryReport:
    """
    Operator view of enabled mappings that need attention:
      expired  -> expiry before the start of today
      expiring -> expiry from the start of today through the end of the
                  window (today + expiring_window_days)
    Read-only. Both lists ordered by expiry ascending.
    """
    now = now or datetime.now(timezone.utc)
    start, end = expiry_window(now, ZoneInfo(tz or settings.expiry_timezone), settings.expiring_window_days)

    with store_errors(db):
        rows = db.scalars(
            select(Mapping)
            .where(Mapping.enabled.is_(True), Mapping.expiry.is_not(None), Mapping.expiry <= end)
            .order_by(Mapping.expiry.asc(), Mapping.path)
        ).all()

    report = ExpiryReport(expiring=[], expired=[])
    for row in rows:
        bucket = report.expired if row.expiry < start else report.expiring
        bucket.append(MappingOut.model_validate(row))
    return report


def sweep_expired(db: Session, batch_size: int, now: datetime | None = None) -> int:
    """
    Deletes mappings whose expiry is strictly before now, batch_size rows at
    a time, committing each batch. Stops once a batch comes back short.
    Interrupting between batches leaves the rest for the next run.
    """
    if batch_size <= 0:
        raise ValidationError("batch_size must be > 0")

    cutoff = to_utc_naive(now) if now is not None else utcnow()
    deleted = 0
    batches = 0

    while True:
        with store_errors(db):
            paths = db.scalars(
                select(Mapping.path)
                .where(Mapping.expiry.is_not(None), Mapping.expiry < cutoff)
                .limit(batch_size)
            ).all()
            if not paths:
                break

            result = db.execute(delete(Mapping).where(Mapping.path.in_(paths)))
            db.commit()

        batches += 1
        deleted += result.rowcount
        logger.debug("sweep batch %d removed %d of %d selected", batches, result.rowcount, len(paths))

        if len(paths) < batch_size:
            break

    if deleted:
        logger.info("swept %d expired mappings in %d batches", deleted, batches)
    return deleted
