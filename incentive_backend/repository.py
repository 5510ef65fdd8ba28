"""Storage access for the core.

Two implementations share one interface: ``SqlRepository`` wraps a SQLAlchemy
session and is durable, ``InMemoryRepository`` keeps transient model instances in
dicts and loses everything on restart. Which one the API uses is decided by
configuration (see ``incentive_backend.config``).
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, OperationalError

from incentive_database.models import Category, Note, Tag, Task, User

from .core.errors import Conflict, InfrastructureError

logger = logging.getLogger(__name__)


class Repository:
    """Interface the core talks to. Lookups return ``None`` when nothing matches."""

    @contextmanager
    def transaction(self):
        raise NotImplementedError

    def add(self, obj):
        raise NotImplementedError

    def save(self, obj):
        raise NotImplementedError

    def delete(self, obj):
        raise NotImplementedError

    def get_user(self, user_id):
        raise NotImplementedError

    def get_user_by_email(self, email):
        raise NotImplementedError

    def list_users(self):
        raise NotImplementedError

    def get_owned(self, model, entity_id, user_id, lock=False):
        raise NotImplementedError

    def find_tags(self, user_id, tag_ids):
        raise NotImplementedError

    def list_notes(self, user_id, q=None, skip=0, limit=100):
        raise NotImplementedError

    def list_categories(self, user_id):
        raise NotImplementedError

    def list_tags(self, user_id):
        raise NotImplementedError

    def list_tasks(self, user_id, completed=None, priority=None, category_id=None, tag_id=None):
        raise NotImplementedError

    def detach_category(self, category):
        raise NotImplementedError

    def detach_tag(self, tag):
        raise NotImplementedError


# PUBLIC_INTERFACE
class SqlRepository(Repository):
    """Durable repository backed by a SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    @contextmanager
    def transaction(self):
        try:
            yield self
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("Integrity error, transaction rolled back: %s", exc.orig)
            raise Conflict("The record conflicts with an existing one.") from exc
        except OperationalError as exc:
            self.session.rollback()
            logger.error("Database unavailable: %s", exc.orig)
            raise InfrastructureError("The database is unavailable at the moment.") from exc
        except Exception:
            self.session.rollback()
            raise

    def add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    def save(self, obj):
        obj.updated_at = datetime.utcnow()
        self.session.flush()
        return obj

    def delete(self, obj):
        self.session.delete(obj)
        self.session.flush()

    def get_user(self, user_id):
        return self.session.query(User).filter(User.id == user_id).first()

    def get_user_by_email(self, email):
        return self.session.query(User).filter(User.email == email).first()

    def list_users(self):
        return self.session.query(User).order_by(User.created_at.asc()).all()

    def get_owned(self, model, entity_id, user_id, lock=False):
        query = self.session.query(model).filter(model.id == entity_id, model.user_id == user_id)
        if lock:
            # re-read the row even if the session already holds it
            query = query.with_for_update().populate_existing()
        return query.first()

    def find_tags(self, user_id, tag_ids):
        if not tag_ids:
            return []
        return (
            self.session.query(Tag)
            .filter(Tag.id.in_(list(tag_ids)), Tag.user_id == user_id)
            .all()
        )

    def list_notes(self, user_id, q=None, skip=0, limit=100):
        query = self.session.query(Note).filter(Note.user_id == user_id)
        if q:
            search = f"%{q}%"
            query = query.filter(or_(Note.title.ilike(search), Note.content.ilike(search)))
        return (
            query.order_by(Note.pinned.desc(), Note.updated_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def list_categories(self, user_id):
        return (
            self.session.query(Category)
            .filter(Category.user_id == user_id)
            .order_by(Category.name.asc())
            .all()
        )

    def list_tags(self, user_id):
        return self.session.query(Tag).filter(Tag.user_id == user_id).order_by(Tag.name.asc()).all()

    def list_tasks(self, user_id, completed=None, priority=None, category_id=None, tag_id=None):
        query = self.session.query(Task).filter(Task.user_id == user_id)
        if completed is not None:
            query = query.filter(Task.completed == completed)
        if priority is not None:
            query = query.filter(Task.priority == priority)
        if category_id is not None:
            query = query.filter(Task.category_id == category_id)
        if tag_id is not None:
            query = query.filter(Task.tags.any(Tag.id == tag_id))
        return query.order_by(
            Task.completed.asc(),
            Task.due_date.is_(None),
            Task.due_date.asc(),
            Task.updated_at.desc(),
        ).all()

    def detach_category(self, category):
        count = (
            self.session.query(Task)
            .filter(Task.category_id == category.id)
            .update({Task.category_id: None}, synchronize_session="fetch")
        )
        self.session.flush()
        return count

    def detach_tag(self, tag):
        count = len(tag.tasks)
        tag.tasks = []
        self.session.flush()
        return count


# PUBLIC_INTERFACE
class InMemoryRepository(Repository):
    """Ephemeral repository. Holds transient model instances keyed by id.

    Relationship attributes (``Task.category``, ``Task.tags``) are kept in sync by
    the models' back_populates events, so the same core code runs against it.
    """

    MODELS = (User, Note, Category, Tag, Task)

    def __init__(self):
        self._rows = {model: {} for model in self.MODELS}
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self):
        """Holds the lock; on error, puts every row back the way it was."""
        with self._lock:
            snapshot = self._snapshot() if self._depth == 0 else None
            self._depth += 1
            try:
                yield self
            except Exception:
                if snapshot is not None:
                    self._restore(snapshot)
                    logger.warning("In-memory transaction rolled back")
                raise
            finally:
                self._depth -= 1

    def _snapshot(self):
        rows = {model: dict(table) for model, table in self._rows.items()}
        state = []
        for table in self._rows.values():
            for obj in table.values():
                values = {column.key: getattr(obj, column.key) for column in obj.__table__.columns}
                if isinstance(obj, Task):
                    values["category"] = obj.category
                    values["tags"] = list(obj.tags)
                state.append((obj, values))
        return rows, state

    def _restore(self, snapshot):
        rows, state = snapshot
        known = {id(obj) for obj, _ in state}
        for table in self._rows.values():
            for obj in table.values():
                if isinstance(obj, Task) and id(obj) not in known:
                    obj.category = None
                    obj.tags = []
        self._rows = rows
        for obj, values in state:
            values = dict(values)
            if isinstance(obj, Task):
                obj.category = values.pop("category")
                obj.tags = values.pop("tags")
            for key, value in values.items():
                setattr(obj, key, value)

    def _apply_defaults(self, obj):
        for column in obj.__table__.columns:
            if getattr(obj, column.key) is not None or column.default is None:
                continue
            default = column.default
            value = default.arg(None) if default.is_callable else default.arg
            setattr(obj, column.key, value)

    def add(self, obj):
        with self._lock:
            if isinstance(obj, User) and self.get_user_by_email(obj.email) is not None:
                raise Conflict("The record conflicts with an existing one.")
            self._apply_defaults(obj)
            self._rows[type(obj)][obj.id] = obj
        return obj

    def save(self, obj):
        obj.updated_at = datetime.utcnow()
        return obj

    def delete(self, obj):
        with self._lock:
            self._rows[type(obj)].pop(obj.id, None)
            if isinstance(obj, Task):
                obj.category = None
                obj.tags = []
            elif isinstance(obj, User):
                for model in (Note, Task, Category, Tag):
                    owned = [row for row in self._rows[model].values() if row.user_id == obj.id]
                    for row in owned:
                        self.delete(row)

    def get_user(self, user_id):
        return self._rows[User].get(user_id)

    def get_user_by_email(self, email):
        return next((u for u in self._rows[User].values() if u.email == email), None)

    def list_users(self):
        return sorted(self._rows[User].values(), key=lambda u: u.created_at)

    def get_owned(self, model, entity_id, user_id, lock=False):
        row = self._rows[model].get(entity_id)
        if row is None or row.user_id != user_id:
            return None
        return row

    def find_tags(self, user_id, tag_ids):
        found = (self.get_owned(Tag, tag_id, user_id) for tag_id in tag_ids)
        return [tag for tag in found if tag is not None]

    def _owned(self, model, user_id):
        return [row for row in self._rows[model].values() if row.user_id == user_id]

    def list_notes(self, user_id, q=None, skip=0, limit=100):
        notes = self._owned(Note, user_id)
        if q:
            needle = q.lower()
            notes = [
                n for n in notes
                if needle in n.title.lower() or needle in (n.content or "").lower()
            ]
        notes.sort(key=lambda n: n.updated_at, reverse=True)
        notes.sort(key=lambda n: n.pinned, reverse=True)
        return notes[skip:skip + limit]

    def list_categories(self, user_id):
        return sorted(self._owned(Category, user_id), key=lambda c: c.name)

    def list_tags(self, user_id):
        return sorted(self._owned(Tag, user_id), key=lambda t: t.name)

    def list_tasks(self, user_id, completed=None, priority=None, category_id=None, tag_id=None):
        tasks = self._owned(Task, user_id)
        if completed is not None:
            tasks = [t for t in tasks if t.completed == completed]
        if priority is not None:
            tasks = [t for t in tasks if t.priority == priority]
        if category_id is not None:
            tasks = [t for t in tasks if t.category_id == category_id]
        if tag_id is not None:
            tasks = [t for t in tasks if any(tag.id == tag_id for tag in t.tags)]
        # incomplete first, earliest due date first (undated last), newest update first
        tasks.sort(key=lambda t: t.updated_at, reverse=True)
        tasks.sort(key=lambda t: (t.completed, t.due_date is None, t.due_date or datetime.max))
        return tasks

    def detach_category(self, category):
        referencing = [t for t in self._rows[Task].values() if t.category_id == category.id]
        for task in referencing:
            task.category = None
            task.category_id = None
        return len(referencing)

    def detach_tag(self, tag):
        referencing = [t for t in self._rows[Task].values() if tag in t.tags]
        for task in referencing:
            task.tags.remove(tag)
        return len(referencing)
