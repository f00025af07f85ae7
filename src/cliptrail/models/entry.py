from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

import ulid
from pydantic import BaseModel, Field, field_validator

RepresentationMap = Dict[str, bytes]


class ContentKind(str, Enum):
    PLAIN_TEXT = "text"
    FILE_REFERENCE = "file"
    IMAGE = "image"
    OPAQUE = "opaque"


def new_entry_id() -> str:
    return f"e_{ulid.new()}"


@dataclass(frozen=True)
class EntrySummary:
    """Lightweight list-view record; never carries the payload."""
    id: str
    display_text: str
    created_at: datetime
    sort_key: datetime
    content_kind: ContentKind
    fingerprint: str
    source_application: Optional[str] = None

    def with_sort_key(self, sort_key: datetime, **changes) -> "EntrySummary":
        return replace(self, sort_key=sort_key, **changes)


class HistoryEntry(BaseModel):
    """A full history record as handed to a store for insertion."""

    id: str = Field(default_factory=new_entry_id)
    display_text: str
    created_at: datetime = Field(default_factory=datetime.now)
    sort_key: Optional[datetime] = None
    content_kind: ContentKind
    fingerprint: str
    source_application: Optional[str] = None
    raw_payload: List[RepresentationMap]

    @field_validator("raw_payload")
    @classmethod
    def _payload_not_empty(cls, value: List[RepresentationMap]) -> List[RepresentationMap]:
        if not value or not any(value):
            raise ValueError("raw_payload must contain at least one representation")
        return value

    def effective_sort_key(self) -> datetime:
        return self.sort_key or self.created_at

    def summary(self) -> EntrySummary:
        return EntrySummary(
            id=self.id,
            display_text=self.display_text,
            created_at=self.created_at,
            sort_key=self.effective_sort_key(),
            content_kind=self.content_kind,
            fingerprint=self.fingerprint,
            source_application=self.source_application,
        )
