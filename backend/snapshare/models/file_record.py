"""FileRecord model - metadata for an object already uploaded to storage."""
from sqlalchemy import String, BigInteger
from sqlalchemy.orm import Mapped, mapped_column
from snapshare.models.base import Base


class FileRecord(Base):
    __tablename__ = "files"

    file_key: Mapped[str] = mapped_column(String(200), primary_key=True)
    channel_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_type: Mapped[str] = mapped_column(String(200), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    uploader_hash: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    # Milliseconds since epoch, set at registration time
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
