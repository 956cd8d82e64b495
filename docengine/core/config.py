"""Engine settings and the document-type registry (YAML parser, Pydantic models)."""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_REGISTRY_PATH = Path(__file__).resolve().parent / "document_types.yaml"

_ENV_PREFIX = "DOCENGINE_"


# ── Chunking ─────────────────────────────────────────────────────────


class ChunkConfig(BaseModel):
    """How many pages one invocation handles and how long its answer may be."""

    pages_per_chunk: int = Field(ge=1, default=5)
    max_output_tokens: int = Field(ge=1, default=4000)


# ── Merge Rules ──────────────────────────────────────────────────────

MergeStrategy = Literal["ledger", "sectioned_report", "single_statement", "generic"]


class MergeRules(BaseModel):
    """Field designations used when folding a chunk into accumulated fields."""

    strategy: MergeStrategy = "generic"
    list_fields: list[str] = Field(default_factory=list)
    latest_fields: list[str] = Field(
        default_factory=list, description="Overwritten by the newest non-empty value"
    )
    first_seen_fields: list[str] = Field(
        default_factory=list, description="Kept from the first chunk that supplied them"
    )
    sum_fields: list[str] = Field(default_factory=list)
    max_fields: list[str] = Field(default_factory=list)
    text_fields: list[str] = Field(
        default_factory=list, description="Free text joined across chunks"
    )
    text_separator: str = "; "

    @property
    def numeric_fields(self) -> set[str]:
        return (
            set(self.latest_fields)
            | set(self.first_seen_fields)
            | set(self.sum_fields)
            | set(self.max_fields)
        )


# ── Continuation Summary ─────────────────────────────────────────────


class SummaryRules(BaseModel):
    """What to mention about earlier chunks when prompting for a later one."""

    labels: dict[str, str] = Field(
        default_factory=dict, description="field name -> label, rendered 'Label: value'"
    )
    counts: dict[str, str] = Field(
        default_factory=dict, description="list field -> phrase, rendered 'N phrase'"
    )


# ── Document Types ───────────────────────────────────────────────────


class DocumentTypeConfig(BaseModel):
    """Prompt, chunking and merge behavior for one document type."""

    prompt: str
    chunking: ChunkConfig = Field(default_factory=ChunkConfig)
    merge: MergeRules = Field(default_factory=MergeRules)
    summary: Optional[SummaryRules] = None


class DocumentRegistry(BaseModel):
    """Explicit configuration map keyed by document type."""

    default: DocumentTypeConfig
    document_types: dict[str, DocumentTypeConfig] = Field(default_factory=dict)

    @field_validator("document_types")
    @classmethod
    def no_blank_names(
        cls, v: dict[str, DocumentTypeConfig]
    ) -> dict[str, DocumentTypeConfig]:
        for name in v:
            if not name.strip():
                raise ValueError("Document type names must not be blank")
        return v

    def get(self, document_type: str) -> DocumentTypeConfig:
        return self.document_types.get(document_type, self.default)

    def resolve(self, document_type: str) -> ChunkConfig:
        """Chunking parameters for a type; unknown types get the default."""
        return self.get(document_type).chunking

    def merge_rules(self, document_type: str) -> MergeRules:
        return self.get(document_type).merge


def load_document_registry(path: str | Path | None = None) -> DocumentRegistry:
    """Load a YAML document-type registry from disk and return a validated model."""
    if path is None:
        return _default_registry()
    path = Path(path)
    with open(path) as f:
        raw = yaml.safe_load(f)
    return DocumentRegistry.model_validate(raw)


@lru_cache(maxsize=1)
def _default_registry() -> DocumentRegistry:
    with open(DEFAULT_REGISTRY_PATH) as f:
        raw = yaml.safe_load(f)
    return DocumentRegistry.model_validate(raw)


# ── Settings ─────────────────────────────────────────────────────────


class Settings(BaseModel):
    """Runtime settings, read from DOCENGINE_* environment variables."""

    data_root: Path = Path("data")
    store_root: Optional[Path] = None
    registry_path: Optional[Path] = None
    model: str = "qwen2.5vl:7b"
    render_dpi: int = Field(ge=36, le=600, default=150)
    extraction_retries: int = Field(ge=0, default=2)
    retry_base_delay: float = Field(ge=0.0, default=2.0)
    download_retry_delay: float = Field(ge=0.0, default=1.0)
    self_url: Optional[str] = Field(
        default=None, description="Base URL continuations are POSTed to"
    )
    continuation_timeout: float = Field(gt=0.0, default=5.0)
    stale_after_minutes: int = Field(ge=1, default=30)

    @model_validator(mode="after")
    def default_store_root(self) -> "Settings":
        if self.store_root is None:
            self.store_root = self.data_root / "objects"
        return self

    @property
    def db_path(self) -> Path:
        return self.data_root / "documents.db"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        environ = os.environ if environ is None else environ
        raw = {}
        for name in cls.model_fields:
            key = f"{_ENV_PREFIX}{name.upper()}"
            if environ.get(key):
                raw[name] = environ[key]
        return cls.model_validate(raw)
