"""QuotaCounter model - per-identity usage within one calendar bucket."""
from sqlalchemy import String, BigInteger, Integer
from sqlalchemy.orm import Mapped, mapped_column
from snapshare.models.base import Base


class QuotaCounter(Base):
    __tablename__ = "quota_counters"

    identity: Mapped[str] = mapped_column(String(16), primary_key=True)
    bucket: Mapped[str] = mapped_column(String(32), primary_key=True)  # e.g. "hour:2026-10-19T14"
    window: Mapped[str] = mapped_column(String(10), nullable=False)
    file_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    byte_total: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    # Milliseconds since epoch; one bucket width past the last write
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
