"""Request and response bodies.

JSON uses camelCase (``userId``, ``dueDate``, ``tagIds``); snake_case is accepted on
input as well. Update bodies are read with ``exclude_unset`` so that only the
fields a client actually sent reach the core.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

Priority = Literal["alta", "média", "baixa"]
Role = Literal["USER", "ADMIN"]

HEX_COLOR = r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$"


class Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _naive_utc(value):
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# Users

class UserCreate(Schema):
    name: str = Field(..., min_length=1, max_length=128)
    email: EmailStr
    password: str = Field(..., min_length=5, max_length=256)


class UserUpdate(Schema):
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None


class UserOut(Schema):
    id: str
    name: str
    email: str
    role: str
    created_at: datetime
    updated_at: datetime


class Token(BaseModel):
    # snake_case on purpose: OAuth2 clients expect these exact keys
    success: bool = True
    access_token: str
    token_type: str
    user: UserOut


# Notes

class NoteCreate(Schema):
    title: str = Field(..., max_length=128)
    content: Optional[str] = Field(default=None, description="Note content, markdown allowed")
    pinned: bool = False


class NoteUpdate(Schema):
    title: Optional[str] = Field(None, max_length=128)
    content: Optional[str] = None
    pinned: Optional[bool] = None


class NoteOut(Schema):
    id: str
    title: str
    content: str
    pinned: bool
    user_id: str
    created_at: datetime
    updated_at: datetime


# Categories and tags

class LabelCreate(Schema):
    name: str = Field(..., max_length=64)
    color: Optional[str] = Field(None, pattern=HEX_COLOR)


class LabelUpdate(Schema):
    name: Optional[str] = Field(None, max_length=64)
    color: Optional[str] = Field(None, pattern=HEX_COLOR)


class LabelOut(Schema):
    id: str
    name: str
    color: str
    user_id: str
    created_at: datetime
    updated_at: datetime


# Tasks

class TaskCreate(Schema):
    title: str = Field(..., max_length=200)
    description: Optional[str] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    category_id: Optional[str] = None
    tag_ids: List[str] = Field(default_factory=list)

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value):
        return _naive_utc(value)


class TaskUpdate(Schema):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    completed: Optional[bool] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    category_id: Optional[str] = None
    tag_ids: Optional[List[str]] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value):
        return _naive_utc(value)


class TaskOut(Schema):
    id: str
    title: str
    description: str
    completed: bool
    priority: str
    due_date: Optional[datetime] = None
    category_id: Optional[str] = None
    category: Optional[LabelOut] = None
    tags: List[LabelOut] = Field(default_factory=list)
    user_id: str
    created_at: datetime
    updated_at: datetime

    @field_validator("tags")
    @classmethod
    def order_tags_by_name(cls, value):
        return sorted(value, key=lambda tag: tag.name)


# Envelopes: every response says whether it worked and, when useful, why

class Envelope(Schema):
    success: bool = True
    message: Optional[str] = None


class UserEnvelope(Envelope):
    user: UserOut


class UsersEnvelope(Envelope):
    users: List[UserOut]


class NoteEnvelope(Envelope):
    note: NoteOut


class NotesEnvelope(Envelope):
    notes: List[NoteOut]


class CategoryEnvelope(Envelope):
    category: LabelOut


class CategoriesEnvelope(Envelope):
    categories: List[LabelOut]


class TagEnvelope(Envelope):
    tag: LabelOut


class TagsEnvelope(Envelope):
    tags: List[LabelOut]


class TaskEnvelope(Envelope):
    task: TaskOut


class TasksEnvelope(Envelope):
    tasks: List[TaskOut]
