from datetime import datetime

import pytest

from incentive_backend.core import labels, task_writer
from incentive_backend.core.errors import InvalidReference, NotFound, ValidationError
from incentive_database.models import Category, Tag


@pytest.fixture
def work(repo, owner_id):
    return labels.create_label(repo, Category, owner_id, {"name": "Work", "color": "#4CAF50"})


@pytest.fixture
def urgent(repo, owner_id):
    return labels.create_label(repo, Tag, owner_id, {"name": "Urgent"})


@pytest.fixture
def later(repo, owner_id):
    return labels.create_label(repo, Tag, owner_id, {"name": "Later"})


def tag_ids(task):
    return sorted(t.id for t in task.tags)


def test_create_defaults(repo, owner_id):
    task = task_writer.create_task(repo, owner_id, {"title": "Write report"})
    assert task.title == "Write report"
    assert task.description == ""
    assert task.priority == "média"
    assert task.completed is False
    assert task.due_date is None
    assert task.category_id is None
    assert task.tags == []


def test_create_with_category_and_tags(repo, owner_id, work, urgent, later):
    due = datetime(2026, 11, 1, 9, 0)
    task = task_writer.create_task(repo, owner_id, {
        "title": "Write report",
        "priority": "alta",
        "due_date": due,
        "category_id": work.id,
        "tag_ids": [urgent.id, later.id],
    })
    assert task.category_id == work.id
    assert task.category.name == "Work"
    assert tag_ids(task) == sorted([urgent.id, later.id])
    assert task.due_date == due


def test_create_requires_title(repo, owner_id):
    with pytest.raises(ValidationError):
        task_writer.create_task(repo, owner_id, {"title": "   "})
    with pytest.raises(ValidationError):
        task_writer.create_task(repo, owner_id, {})


def test_create_rejects_unknown_tag_and_writes_nothing(repo, owner_id, urgent):
    with pytest.raises(InvalidReference):
        task_writer.create_task(repo, owner_id, {"title": "x", "tag_ids": [urgent.id, "nonexistent-id"]})
    assert repo.list_tasks(owner_id) == []


def test_create_rejects_foreign_category(repo, owner_id, other_id):
    theirs = labels.create_label(repo, Category, other_id, {"name": "Theirs"})
    with pytest.raises(InvalidReference):
        task_writer.create_task(repo, owner_id, {"title": "x", "category_id": theirs.id})
    assert repo.list_tasks(owner_id) == []


def test_plan_create_has_no_side_effects(repo, owner_id, urgent):
    plan = task_writer.plan_create(repo, owner_id, {"title": "Draft", "tag_ids": [urgent.id]})
    assert [t.id for t in plan.tags] == [urgent.id]
    assert repo.list_tasks(owner_id) == []


def test_update_only_completed_keeps_everything_else(repo, owner_id, work, urgent):
    due = datetime(2026, 12, 24, 18, 0)
    task = task_writer.create_task(repo, owner_id, {
        "title": "Write report",
        "description": "quarterly",
        "priority": "baixa",
        "due_date": due,
        "category_id": work.id,
        "tag_ids": [urgent.id],
    })
    updated = task_writer.update_task(repo, owner_id, task.id, {"completed": True})
    assert updated.completed is True
    assert updated.title == "Write report"
    assert updated.description == "quarterly"
    assert updated.priority == "baixa"
    assert updated.due_date == due
    assert updated.category_id == work.id
    assert tag_ids(updated) == [urgent.id]


def test_update_detaches_and_reattaches_category(repo, owner_id, work):
    task = task_writer.create_task(repo, owner_id, {"title": "t", "category_id": work.id})
    task = task_writer.update_task(repo, owner_id, task.id, {"category_id": None})
    assert task.category_id is None
    assert task.category is None
    task = task_writer.update_task(repo, owner_id, task.id, {"category_id": work.id})
    assert task.category_id == work.id


def test_update_rejects_foreign_or_unknown_category(repo, owner_id, other_id, work):
    theirs = labels.create_label(repo, Category, other_id, {"name": "Theirs"})
    task = task_writer.create_task(repo, owner_id, {"title": "t", "category_id": work.id})
    for bad_id in (theirs.id, "nonexistent-id"):
        with pytest.raises(InvalidReference):
            task_writer.update_task(repo, owner_id, task.id, {"title": "renamed", "category_id": bad_id})
        again = task_writer.get_task(repo, owner_id, task.id)
        assert again.category_id == work.id
        assert again.title == "t"
    assert labels.label_tasks(repo, Category, other_id, theirs.id) == []


def test_update_replaces_tag_set(repo, owner_id, urgent, later):
    task = task_writer.create_task(repo, owner_id, {"title": "t", "tag_ids": [urgent.id]})
    task = task_writer.update_task(repo, owner_id, task.id, {"tag_ids": [later.id]})
    assert tag_ids(task) == [later.id]
    task = task_writer.update_task(repo, owner_id, task.id, {"tag_ids": []})
    assert task.tags == []


def test_update_with_bad_tag_leaves_tags_untouched(repo, owner_id, urgent, later):
    task = task_writer.create_task(repo, owner_id, {"title": "t", "tag_ids": [urgent.id]})
    with pytest.raises(InvalidReference):
        task_writer.update_task(repo, owner_id, task.id, {"title": "renamed", "tag_ids": [later.id, "nonexistent-id"]})
    again = task_writer.get_task(repo, owner_id, task.id)
    assert tag_ids(again) == [urgent.id]
    assert again.title == "t"


def test_update_rejects_blank_title_and_bad_priority(repo, owner_id):
    task = task_writer.create_task(repo, owner_id, {"title": "t"})
    with pytest.raises(ValidationError):
        task_writer.update_task(repo, owner_id, task.id, {"title": ""})
    with pytest.raises(ValidationError):
        task_writer.update_task(repo, owner_id, task.id, {"priority": "urgent"})


def test_other_user_cannot_touch_task(repo, owner_id, other_id, urgent):
    task = task_writer.create_task(repo, owner_id, {"title": "mine", "tag_ids": [urgent.id]})
    with pytest.raises(NotFound):
        task_writer.update_task(repo, other_id, task.id, {"title": "hax"})
    with pytest.raises(NotFound):
        task_writer.toggle_complete(repo, other_id, task.id)
    with pytest.raises(NotFound):
        task_writer.remove_tag(repo, other_id, task.id, urgent.id)
    with pytest.raises(NotFound):
        task_writer.delete_task(repo, other_id, task.id)
    unchanged = task_writer.get_task(repo, owner_id, task.id)
    assert unchanged.title == "mine"
    assert unchanged.completed is False
    assert tag_ids(unchanged) == [urgent.id]


def test_toggle_complete_flips_stored_value(repo, owner_id):
    task = task_writer.create_task(repo, owner_id, {"title": "t"})
    assert task_writer.toggle_complete(repo, owner_id, task.id).completed is True
    assert task_writer.toggle_complete(repo, owner_id, task.id).completed is False


def test_add_tag_is_idempotent(repo, owner_id, urgent):
    task = task_writer.create_task(repo, owner_id, {"title": "t"})
    task, added = task_writer.add_tag(repo, owner_id, task.id, urgent.id)
    assert added is True
    task, added = task_writer.add_tag(repo, owner_id, task.id, urgent.id)
    assert added is False
    assert tag_ids(task) == [urgent.id]


def test_add_tag_rejects_foreign_tag(repo, owner_id, other_id):
    theirs = labels.create_label(repo, Tag, other_id, {"name": "theirs"})
    task = task_writer.create_task(repo, owner_id, {"title": "t"})
    with pytest.raises(NotFound):
        task_writer.add_tag(repo, owner_id, task.id, theirs.id)
    assert task_writer.get_task(repo, owner_id, task.id).tags == []


def test_remove_tag(repo, owner_id, urgent, later):
    task = task_writer.create_task(repo, owner_id, {"title": "t", "tag_ids": [urgent.id]})
    with pytest.raises(NotFound):
        task_writer.remove_tag(repo, owner_id, task.id, later.id)
    task = task_writer.remove_tag(repo, owner_id, task.id, urgent.id)
    assert task.tags == []


def test_delete_task(repo, owner_id, urgent):
    task = task_writer.create_task(repo, owner_id, {"title": "t", "tag_ids": [urgent.id]})
    task_id = task.id
    task_writer.delete_task(repo, owner_id, task_id)
    with pytest.raises(NotFound):
        task_writer.get_task(repo, owner_id, task_id)
    # the tag survives its task
    assert labels.get_label(repo, Tag, owner_id, urgent.id).name == "Urgent"


def test_list_orders_open_before_done_and_by_due_date(repo, owner_id, work):
    undated = task_writer.create_task(repo, owner_id, {"title": "undated"})
    soon = task_writer.create_task(repo, owner_id, {"title": "soon", "due_date": datetime(2026, 10, 20)})
    later = task_writer.create_task(repo, owner_id, {"title": "later", "due_date": datetime(2026, 12, 1),
                                                     "category_id": work.id})
    done = task_writer.create_task(repo, owner_id, {"title": "done", "due_date": datetime(2026, 1, 1)})
    task_writer.toggle_complete(repo, owner_id, done.id)

    titles = [t.title for t in task_writer.list_tasks(repo, owner_id)]
    assert titles == ["soon", "later", "undated", "done"]

    assert [t.id for t in task_writer.list_tasks(repo, owner_id, category_id=work.id)] == [later.id]
    assert [t.id for t in task_writer.list_tasks(repo, owner_id, completed=True)] == [done.id]
    assert {t.id for t in task_writer.list_tasks(repo, owner_id, completed=False)} == {undated.id, soon.id, later.id}
