from pydantic import BaseModel, Field
from typing import Optional, List
from dataclasses import dataclass, field
from enum import Enum

from key_reconciler import Observation


class FileStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class UploadedDocument:
    """A document in the current session and what extraction produced for it"""
    id: str
    filename: str
    mime_type: str
    content: bytes = field(repr=False)
    status: FileStatus = FileStatus.PENDING
    observations: List[Observation] = field(default_factory=list)
    error: Optional[str] = None
    completed_seq: Optional[int] = None  # processing-completion order

    def to_status(self) -> "DocumentStatus":
        return DocumentStatus(
            id=self.id,
            filename=self.filename,
            mime_type=self.mime_type,
            size=len(self.content),
            status=self.status,
            observation_count=len(self.observations),
            error=self.error,
        )


class DocumentStatus(BaseModel):
    id: str
    filename: str
    mime_type: str
    size: int
    status: FileStatus
    observation_count: int = 0
    error: Optional[str] = None


class ColumnModel(BaseModel):
    id: str
    display_key: str
    member_keys: List[str]
    selected: bool = True


class SessionState(BaseModel):
    documents: List[DocumentStatus] = []
    columns: List[ColumnModel] = []
    completed: int = 0
    failed: int = 0
    pending: int = 0


class SelectionRequest(BaseModel):
    column_ids: List[str]


class ColumnOrderRequest(BaseModel):
    column_ids: List[str]


class TableResponse(BaseModel):
    headers: List[str]
    rows: List[List[str]]


class ExtractRequest(BaseModel):
    """Raw extraction payload: base64 document data plus its MIME type"""
    image: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")

    model_config = {"populate_by_name": True}


class HeaderSuggestionResponse(BaseModel):
    headers: List[str]


class BatchUploadResponse(BaseModel):
    success: bool
    total_files: int
    added: int
    skipped: List[str] = []
    state: SessionState
    message: str
