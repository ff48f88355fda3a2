"""Upload grant request/response schemas."""
from typing import List, Optional
from pydantic import BaseModel, model_validator
from snapshare.schemas.base import CamelModel


class UploadGrantRequest(CamelModel):
    """Either a single `fileSizeBytes` or a batch of sizes in `files`."""
    file_size_bytes: Optional[int] = None
    files: Optional[List[int]] = None

    @model_validator(mode="after")
    def require_one_form(self):
        if self.file_size_bytes is None and not self.files:
            raise ValueError("Provide fileSizeBytes or a non-empty files list")
        if self.file_size_bytes is not None and self.files:
            raise ValueError("Provide either fileSizeBytes or files, not both")
        return self

    def sizes(self) -> List[int]:
        if self.files:
            return list(self.files)
        return [self.file_size_bytes]


class UploadGrantResponse(BaseModel):
    url: str
    method: str
    file_key: str
    file_size_bytes: int
    max_size_bytes: int
    expires_in: int

    model_config = {"from_attributes": True}


class UploadGrantListResponse(BaseModel):
    success: bool = True
    data: List[UploadGrantResponse]
