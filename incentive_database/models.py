import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Table, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

PRIORITIES = ("alta", "média", "baixa")
ROLES = ("USER", "ADMIN")

DEFAULT_CATEGORY_COLOR = "#6200ee"
DEFAULT_TAG_COLOR = "#03DAC5"


def new_id():
    return str(uuid.uuid4())


task_tags = Table(
    "task_tags",
    Base.metadata,
    Column("task_id", String(36), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


# PUBLIC_INTERFACE
class User(Base):
    """
    SQLAlchemy model for an Incentive user. Owns every note, task, category and tag.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(128), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(256), nullable=False)
    role = Column(String(16), nullable=False, default="USER")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    notes = relationship("Note", back_populates="owner", cascade="all, delete-orphan")
    tasks = relationship("Task", back_populates="owner", cascade="all, delete-orphan")
    categories = relationship("Category", back_populates="owner", cascade="all, delete-orphan")
    tags = relationship("Tag", back_populates="owner", cascade="all, delete-orphan")


# PUBLIC_INTERFACE
class Note(Base):
    """
    SQLAlchemy model for a note.
    """
    __tablename__ = "notes"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(128), nullable=False)
    content = Column(Text, nullable=False, default="")
    pinned = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    owner = relationship("User", back_populates="notes")


# PUBLIC_INTERFACE
class Category(Base):
    """
    Single-select grouping label for tasks.
    """
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(64), nullable=False)
    color = Column(String(16), nullable=False, default=DEFAULT_CATEGORY_COLOR)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    owner = relationship("User", back_populates="categories")
    tasks = relationship("Task", back_populates="category")


# PUBLIC_INTERFACE
class Tag(Base):
    """
    Multi-select grouping label for tasks.
    """
    __tablename__ = "tags"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(64), nullable=False)
    color = Column(String(16), nullable=False, default=DEFAULT_TAG_COLOR)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    owner = relationship("User", back_populates="tags")
    tasks = relationship("Task", secondary=task_tags, back_populates="tags")


# PUBLIC_INTERFACE
class Task(Base):
    """
    SQLAlchemy model for a to-do item with optional due date, category and tags.
    """
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    completed = Column(Boolean, nullable=False, default=False)
    priority = Column(String(8), nullable=False, default="média")
    due_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category_id = Column(String(36), ForeignKey("categories.id"), nullable=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    owner = relationship("User", back_populates="tasks")
    category = relationship("Category", back_populates="tasks")
    tags = relationship("Tag", secondary=task_tags, back_populates="tasks", order_by="Tag.name")
