"""Request and response models for the notes API."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Capacity of the MySQL TEXT column backing Note.content.
CONTENT_MAX_BYTES = 65_535


def _check_content_size(value: Optional[str]) -> Optional[str]:
    if value is not None and len(value.encode("utf-8")) > CONTENT_MAX_BYTES:
        raise ValueError(f"content must be at most {CONTENT_MAX_BYTES} bytes when UTF-8 encoded")
    return value


class NoteCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, max_length=200)
    content: str = Field(min_length=1)

    check_content_size = field_validator("content")(_check_content_size)


class NoteUpdate(BaseModel):
    """Partial update; only the fields present in the request are changed."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, max_length=200)
    content: Optional[str] = Field(default=None, min_length=1)

    check_content_size = field_validator("content")(_check_content_size)

    @model_validator(mode="after")
    def check_not_empty(self) -> "NoteUpdate":
        if not self.model_fields_set:
            raise ValueError("at least one of 'title' or 'content' is required")
        if "content" in self.model_fields_set and self.content is None:
            raise ValueError("'content' cannot be null")
        return self

    def changes(self) -> dict:
        return self.model_dump(include=self.model_fields_set)


class NoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: Optional[str]
    content: str
    created_at: datetime
    updated_at: datetime
