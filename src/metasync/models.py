"""Data models for AVU records, index documents and broker messages."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Object kinds the search index has a document type for
KNOWN_TARGET_TYPES: tuple[str, ...] = ("file", "folder")

NESTED_TARGET_TYPE = "avu"


class Mode(str, Enum):
    """Operating mode of the worker process."""

    FULL = "full"
    PERIODIC = "periodic"
    INCREMENTAL = "incremental"


def indexed_type(target_type: str) -> str:
    """Map a target type to its indexed document type (file -> file_metadata)."""
    return f"{target_type}_metadata"


INDEXED_TYPES: tuple[str, ...] = tuple(indexed_type(t) for t in KNOWN_TARGET_TYPES)


class AVURecord(BaseModel):
    """One row of attribute metadata.

    ``target_id``/``target_type`` identify what this AVU describes; for nested
    AVUs that is another AVU. ``object_id`` is the root file or folder the row
    belongs to and is the key rows are grouped by.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    attribute: str = ""
    value: str = ""
    unit: str = ""
    target_id: str
    target_type: str
    created_by: str = ""
    modified_by: str = ""
    created_on: datetime | None = None
    modified_on: datetime | None = None
    object_id: str = ""

    @model_validator(mode="before")
    @classmethod
    def default_object_id(cls, data: Any) -> Any:
        # Rows read outside the recursive query describe their own target
        if isinstance(data, dict) and not data.get("object_id"):
            data = {**data, "object_id": data.get("target_id", "")}
        return data

    @property
    def is_nested(self) -> bool:
        """Whether this AVU describes another AVU rather than a file or folder."""
        return self.target_type == NESTED_TARGET_TYPE


class MetadataEntry(BaseModel):
    """One AVU inside an indexed document, with the AVUs attached to it."""

    id: str
    attribute: str
    value: str
    unit: str
    created_by: str
    modified_by: str
    created_on: datetime | None = None
    modified_on: datetime | None = None
    metadata: list["MetadataEntry"] = Field(default_factory=list)


class IndexedDocument(BaseModel):
    """Denormalized document written to the search index for one object."""

    id: str
    doc_type: str
    target_type: str
    metadata: list[MetadataEntry] = Field(default_factory=list)

    @property
    def is_known_type(self) -> bool:
        """Whether the index supports this object's kind."""
        return self.target_type in KNOWN_TARGET_TYPES

    def to_source(self) -> dict[str, Any]:
        """Document body as sent to the search index."""
        return self.model_dump(mode="json")


class BulkMutation(BaseModel):
    """A single upsert or delete queued for a bulk request."""

    action: Literal["index", "delete"]
    id: str
    doc_type: str
    document: dict[str, Any] | None = None

    @classmethod
    def upsert(cls, document: IndexedDocument) -> "BulkMutation":
        """Build an index mutation for a document."""
        return cls(
            action="index",
            id=document.id,
            doc_type=document.doc_type,
            document=document.to_source(),
        )

    @classmethod
    def delete(cls, doc_type: str, doc_id: str) -> "BulkMutation":
        """Build a delete mutation for a document id."""
        return cls(action="delete", id=doc_id, doc_type=doc_type)


class UpdateMessage(BaseModel):
    """Body of an incremental update message: ``{"id": "<object id>"}``."""

    id: str

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Reject blank ids."""
        v = v.strip()
        if not v:
            raise ValueError("id must not be empty")
        return v


class Pong(BaseModel):
    """Reply published on the liveness channel."""

    pong_from: str
