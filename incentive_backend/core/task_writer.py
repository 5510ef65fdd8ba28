"""Create, update and delete tasks.

Writes are two-phase. ``plan_create``/``plan_update`` only read: they check the
payload and resolve every category/tag reference, returning a plan. The
``apply_*`` functions mutate storage from a plan and never fail on a reference.
The public helpers (``create_task``, ``update_task``...) run both phases inside one
repository transaction, so a rejected reference leaves no trace.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from incentive_database.models import PRIORITIES, Category, Tag, Task

from .errors import NotFound, ValidationError
from .relationships import resolve_category, resolve_tags

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = "média"

# scalar columns a caller may change directly
UPDATABLE_FIELDS = ("title", "description", "completed", "priority", "due_date")


@dataclass
class TaskCreatePlan:
    user_id: str
    title: str
    description: str = ""
    priority: str = DEFAULT_PRIORITY
    due_date: Optional[datetime] = None
    category: Optional[Category] = None
    tags: List[Tag] = field(default_factory=list)


@dataclass
class TaskUpdatePlan:
    task: Task
    fields: dict = field(default_factory=dict)
    replace_category: bool = False
    category: Optional[Category] = None
    # None leaves the tag set alone; a list (possibly empty) replaces it
    tags: Optional[List[Tag]] = None


def _clean_title(title):
    if title is None or not str(title).strip():
        raise ValidationError("Title is required.")
    return str(title).strip()


def _check_priority(priority):
    if priority not in PRIORITIES:
        raise ValidationError(f"Priority must be one of: {', '.join(PRIORITIES)}.")
    return priority


def get_owned_task(repo, user_id, task_id, lock=False):
    task = repo.get_owned(Task, task_id, user_id, lock=lock)
    if task is None:
        raise NotFound("Task not found or not owned by the user.")
    return task


# PUBLIC_INTERFACE
def plan_create(repo, user_id, data):
    """Validate a create payload (a dict of supplied fields) and resolve its references."""
    if not user_id:
        raise ValidationError("User id is required.")
    plan = TaskCreatePlan(user_id=user_id, title=_clean_title(data.get("title")))
    plan.description = data.get("description") or ""
    plan.priority = _check_priority(data.get("priority") or DEFAULT_PRIORITY)
    plan.due_date = data.get("due_date")
    if data.get("category_id"):
        plan.category = resolve_category(repo, user_id, data["category_id"])
    plan.tags = resolve_tags(repo, user_id, data.get("tag_ids") or [])
    return plan


# PUBLIC_INTERFACE
def apply_create(repo, plan):
    task = Task(
        title=plan.title,
        description=plan.description,
        priority=plan.priority,
        due_date=plan.due_date,
        completed=False,
        user_id=plan.user_id,
    )
    task.category = plan.category
    task.category_id = plan.category.id if plan.category else None
    task.tags.extend(plan.tags)
    repo.add(task)
    logger.info("Created task %s for user %s with %d tag(s)", task.id, plan.user_id, len(plan.tags))
    return task


# PUBLIC_INTERFACE
def plan_update(repo, user_id, task_id, changes):
    """
    Validate a partial update. ``changes`` holds only the fields the caller sent;
    anything absent keeps its stored value.
    """
    task = get_owned_task(repo, user_id, task_id)
    plan = TaskUpdatePlan(task=task)

    for name in UPDATABLE_FIELDS:
        if name not in changes:
            continue
        value = changes[name]
        if name == "title":
            value = _clean_title(value)
        elif name == "description":
            value = value or ""
        elif name == "completed":
            if value is None:
                raise ValidationError("Completed must be true or false.")
            value = bool(value)
        elif name == "priority":
            value = _check_priority(value)
        plan.fields[name] = value

    if "category_id" in changes:
        plan.replace_category = True
        category_id = changes["category_id"]
        plan.category = resolve_category(repo, user_id, category_id) if category_id else None

    if "tag_ids" in changes and changes["tag_ids"] is not None:
        plan.tags = resolve_tags(repo, user_id, changes["tag_ids"])

    return plan


# PUBLIC_INTERFACE
def apply_update(repo, plan):
    task = plan.task
    for name, value in plan.fields.items():
        setattr(task, name, value)
    if plan.replace_category:
        task.category = plan.category
        task.category_id = plan.category.id if plan.category else None
    if plan.tags is not None:
        # full replacement, not a merge
        task.tags.clear()
        task.tags.extend(plan.tags)
    repo.save(task)
    logger.info("Updated task %s (%s)", task.id, ", ".join(sorted(plan.fields)) or "relations")
    return task


# PUBLIC_INTERFACE
def create_task(repo, user_id, data):
    with repo.transaction():
        plan = plan_create(repo, user_id, data)
        return apply_create(repo, plan)


# PUBLIC_INTERFACE
def update_task(repo, user_id, task_id, changes):
    with repo.transaction():
        plan = plan_update(repo, user_id, task_id, changes)
        return apply_update(repo, plan)


# PUBLIC_INTERFACE
def toggle_complete(repo, user_id, task_id):
    """Flip ``completed`` based on the value stored right now, not on what the caller saw."""
    with repo.transaction():
        task = get_owned_task(repo, user_id, task_id, lock=True)
        task.completed = not task.completed
        repo.save(task)
        return task


# PUBLIC_INTERFACE
def add_tag(repo, user_id, task_id, tag_id):
    """
    Attach one tag. Returns ``(task, added)``; ``added`` is False when the tag was
    already attached, in which case nothing is written.
    """
    with repo.transaction():
        task = get_owned_task(repo, user_id, task_id)
        if any(tag.id == tag_id for tag in task.tags):
            return task, False
        tag = repo.get_owned(Tag, tag_id, user_id)
        if tag is None:
            raise NotFound("Tag not found or not owned by the user.")
        task.tags.append(tag)
        repo.save(task)
        return task, True


# PUBLIC_INTERFACE
def remove_tag(repo, user_id, task_id, tag_id):
    with repo.transaction():
        task = get_owned_task(repo, user_id, task_id)
        attached = next((tag for tag in task.tags if tag.id == tag_id), None)
        if attached is None:
            raise NotFound("Tag is not associated with this task.")
        task.tags.remove(attached)
        repo.save(task)
        return task


# PUBLIC_INTERFACE
def delete_task(repo, user_id, task_id):
    with repo.transaction():
        task = get_owned_task(repo, user_id, task_id)
        repo.delete(task)
    logger.info("Deleted task %s for user %s", task_id, user_id)


def get_task(repo, user_id, task_id):
    return get_owned_task(repo, user_id, task_id)


def list_tasks(repo, user_id, completed=None, priority=None, category_id=None, tag_id=None):
    return repo.list_tasks(
        user_id, completed=completed, priority=priority, category_id=category_id, tag_id=tag_id
    )
