from __future__ import annotations

import json
import logging
import threading

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from shortlink.errors import RegistryError, StoreUnavailableError, ValidationError
from shortlink.kv import KeyValueSource
from shortlink.schemas import MappingCreate, MigrationReport
from shortlink.service import create_mapping, is_reserved

logger = logging.getLogger(__name__)


def decode_legacy_value(key: str, raw: str) -> MappingCreate | None:
    """
    Legacy values are JSON objects using the camelCase field names
    (target, name, expiry, enabled, isWechat, qrCodeData, imageUrl, ...).
    The key is the path. Returns None for empty values.
    """
    try:
        value = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise ValidationError(f"value is not valid JSON: {e}") from e
    if not value:
        return None
    if not isinstance(value, dict):
        raise ValidationError("value is not a JSON object")

    # Falsy legacy fields meant "unset".
    for field in ("imageUrl", "imageBase64", "imageAlt"):
        value[field] = value.get(field) or None
    for field in ("enabled", "isWechat"):
        if value.get(field) is None:
            value.pop(field, None)

    try:
        return MappingCreate.model_validate({**value, "path": key})
    except PydanticValidationError as e:
        raise ValidationError(f"invalid legacy record: {e.errors()[0]['msg']}") from e


def migrate(db: Session, source: KeyValueSource, stop: threading.Event | None = None) -> MigrationReport:
    """
    Copy every legacy entry into the mappings table.

    Each entry stands alone: a failing create (duplicate, invalid record) is
    logged and counted as skipped. Re-running is safe because entries that
    already made it across are skipped as duplicates. Setting `stop` ends
    the walk between entries.
    """
    report = MigrationReport()

    for key, raw in source.iter_entries():
        if stop is not None and stop.is_set():
            report.interrupted = True
            logger.warning("migration interrupted after %d imported", report.imported)
            break

        if is_reserved(key) or raw is None:
            report.skipped += 1
            continue

        try:
            record = decode_legacy_value(key, raw)
            if record is None:
                report.skipped += 1
                continue
            create_mapping(db, record)
        except StoreUnavailableError:
            raise
        except RegistryError as e:
            db.rollback()
            report.skipped += 1
            logger.warning("migration skipped %s: %s", key, e.message)
            continue

        report.imported += 1

    logger.info("migration finished: imported=%d skipped=%d", report.imported, report.skipped)
    return report
