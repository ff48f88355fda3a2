"""Import all models so SQLAlchemy metadata knows about them."""
from snapshare.models.base import Base
from snapshare.models.file_record import FileRecord
from snapshare.models.quota_counter import QuotaCounter

__all__ = ["Base", "FileRecord", "QuotaCounter"]
