from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Index, String, Text, false, func, true
from sqlalchemy.orm import Mapped, mapped_column

from shortlink.db import Base


def utcnow() -> datetime:
    """Naive UTC now; every timestamp column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Mapping(Base):
    __tablename__ = "mappings"

    path: Mapped[str] = mapped_column(String(255), primary_key=True)
    target: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expiry: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, server_default=func.current_timestamp()
    )
    # Legacy camelCase column names are kept so older databases upgrade in place.
    is_wechat: Mapped[bool] = mapped_column(
        "isWechat", Boolean, nullable=False, default=False, server_default=false()
    )
    qr_code_data: Mapped[str | None] = mapped_column("qrCodeData", Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column("imageUrl", Text, nullable=True)
    image_base64: Mapped[str | None] = mapped_column("imageBase64", Text, nullable=True)
    image_alt: Mapped[str | None] = mapped_column("imageAlt", Text, nullable=True)

    __table_args__ = (
        Index("idx_expiry", "expiry"),
        Index("idx_created_at", "created_at"),
        Index("idx_enabled_expiry", "enabled", "expiry"),
    )

    def __repr__(self) -> str:
        return f"<Mapping(path={self.path!r}, target={self.target!r})>"


# Columns added after the first release; the schema manager backfills them.
UPGRADE_COLUMNS = ("isWechat", "qrCodeData", "imageUrl", "imageBase64", "imageAlt")
