"""Shared data models for chunk requests, extraction results and job state."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

ParsingStatus = Literal["pending", "processing", "completed", "failed"]

# Keys the engine adds to a field map; never treated as extracted data.
INTERNAL_KEYS = ("parsed_at", "document_type", "parse_error")


class ChunkRequest(BaseModel):
    """One unit of work, passed from invocation to invocation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    document_id: str = Field(min_length=1)
    document_type: str = Field(min_length=1)
    source_path: str = Field(min_length=1)
    current_page: int = Field(ge=1, default=1)
    total_pages: int = Field(ge=0, default=0, description="0 until discovered")
    accumulated_fields: Optional[dict[str, Any]] = None
    job_token: Optional[str] = None

    @model_validator(mode="after")
    def continuation_has_token(self) -> "ChunkRequest":
        if self.current_page > 1 and not self.job_token:
            raise ValueError("jobToken is required when currentPage is past 1")
        return self

    @property
    def is_fresh(self) -> bool:
        """True for a caller-initiated request (not a continuation)."""
        return self.current_page == 1 and self.job_token is None

    def to_payload(self) -> dict:
        """Wire form of the request (camelCase JSON)."""
        return self.model_dump(mode="json", by_alias=True)


class ExtractionResult(BaseModel):
    """Fields extracted from one chunk."""

    fields: dict[str, Any] = Field(default_factory=dict)
    parse_error: bool = False

    def as_field_map(self) -> dict[str, Any]:
        """Fields in stored form: a parse failure carries its flag along."""
        if self.parse_error:
            return {**self.fields, "parse_error": True}
        return dict(self.fields)


class ParsingProgress(BaseModel):
    """Progress metadata persisted between invocations."""

    current_page: int = Field(ge=0, default=0)
    total_pages: int = Field(ge=0, default=0)
    chunks_completed: int = Field(ge=0, default=0)
    total_chunks: int = Field(ge=0, default=0)
    error: Optional[str] = None
    failed_at_page: Optional[int] = None


class JobStatus(BaseModel):
    """Persisted parsing state of one document."""

    document_id: str
    document_type: str
    file_path: str
    parsing_status: ParsingStatus
    parsing_progress: Optional[ParsingProgress] = None
    ocr_data: Optional[dict[str, Any]] = None
    job_token: Optional[str] = None
    parsing_started_at: Optional[datetime] = None
    parsing_completed_at: Optional[datetime] = None
    updated_at: datetime


class ChunkResponse(BaseModel):
    """Synchronous answer to the immediate caller of one invocation."""

    success: bool
    status: Literal["processing", "completed", "failed"]
    message: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
