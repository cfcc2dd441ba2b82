from __future__ import annotations

import logging
import time

from shortlink.config import settings
from shortlink.db import SessionLocal, engine
from shortlink.schema_manager import ensure_schema
from shortlink.service import sweep_expired

logger = logging.getLogger(__name__)


def sweep_once() -> int:
    """
    One scheduled cleanup pass: delete every mapping whose expiry has passed,
    in batches of settings.cleanup_batch_size.
    """
    with SessionLocal() as db:
        return sweep_expired(db, settings.cleanup_batch_size)


def main() -> None:
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ensure_schema(engine)

    logger.info("starting cleanup loop every %ss", settings.cleanup_interval_seconds)
    while True:
        try:
            n = sweep_once()
            if n:
                logger.info("removed %d expired mappings", n)
        except Exception:
            logger.exception("cleanup pass failed")
        time.sleep(settings.cleanup_interval_seconds)


if __name__ == "__main__":
    main()
