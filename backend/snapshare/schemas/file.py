"""File registration and channel listing schemas."""
from typing import List
from pydantic import BaseModel
from snapshare.schemas.base import ORMModel


class FileRegister(BaseModel):
    channel_id: str
    file_key: str
    file_name: str


class FileRecordResponse(ORMModel):
    channel_id: str
    file_key: str
    file_name: str
    file_type: str
    file_size: int
    uploader_hash: str
    created_at: int


class FileRegisterResponse(BaseModel):
    success: bool = True
    count: int
    files: List[FileRecordResponse]


class ChannelFiles(BaseModel):
    channel_id: str
    channelFiles: List[FileRecordResponse]


class ChannelFilesResponse(BaseModel):
    success: bool = True
    data: ChannelFiles
