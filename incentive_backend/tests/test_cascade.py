import pytest

from incentive_backend.core import cascade, labels, task_writer
from incentive_backend.core.errors import NotFound
from incentive_database.models import Category, Tag


def test_deleting_category_nulls_task_references(repo, owner_id):
    work = labels.create_label(repo, Category, owner_id, {"name": "Work", "color": "#4CAF50"})
    task = task_writer.create_task(repo, owner_id, {"title": "Write report", "category_id": work.id})
    other = task_writer.create_task(repo, owner_id, {"title": "Uncategorized"})
    task_id = task.id

    assert cascade.delete_category(repo, owner_id, work.id) == 1

    fetched = task_writer.get_task(repo, owner_id, task_id)
    assert fetched.category_id is None
    assert fetched.category is None
    assert task_writer.get_task(repo, owner_id, other.id).title == "Uncategorized"
    assert repo.list_categories(owner_id) == []


def test_deleting_tag_unlinks_it_everywhere(repo, owner_id):
    urgent = labels.create_label(repo, Tag, owner_id, {"name": "Urgent"})
    keep = labels.create_label(repo, Tag, owner_id, {"name": "Keep"})
    x = task_writer.create_task(repo, owner_id, {"title": "X", "tag_ids": [urgent.id, keep.id]})
    y = task_writer.create_task(repo, owner_id, {"title": "Y"})
    task_writer.add_tag(repo, owner_id, y.id, urgent.id)
    urgent_id, keep_id = urgent.id, keep.id

    assert cascade.delete_tag(repo, owner_id, urgent_id) == 2

    for task_id in (x.id, y.id):
        assert urgent_id not in [t.id for t in task_writer.get_task(repo, owner_id, task_id).tags]
    assert [t.id for t in task_writer.get_task(repo, owner_id, x.id).tags] == [keep_id]
    assert [t.id for t in repo.list_tags(owner_id)] == [keep_id]


def test_foreign_category_delete_is_refused_before_detaching(repo, owner_id, other_id):
    theirs = labels.create_label(repo, Category, other_id, {"name": "Theirs"})
    their_task = task_writer.create_task(repo, other_id, {"title": "t", "category_id": theirs.id})
    with pytest.raises(NotFound):
        cascade.delete_category(repo, owner_id, theirs.id)
    assert task_writer.get_task(repo, other_id, their_task.id).category_id == theirs.id


def test_foreign_tag_delete_is_refused_before_detaching(repo, owner_id, other_id):
    theirs = labels.create_label(repo, Tag, other_id, {"name": "theirs"})
    their_task = task_writer.create_task(repo, other_id, {"title": "t", "tag_ids": [theirs.id]})
    with pytest.raises(NotFound):
        cascade.delete_tag(repo, owner_id, theirs.id)
    assert [t.id for t in task_writer.get_task(repo, other_id, their_task.id).tags] == [theirs.id]


def test_label_tasks_lists_referencing_tasks(repo, owner_id):
    home = labels.create_label(repo, Category, owner_id, {"name": "Home"})
    chores = labels.create_label(repo, Tag, owner_id, {"name": "chores"})
    dishes = task_writer.create_task(repo, owner_id, {"title": "Dishes", "category_id": home.id,
                                                      "tag_ids": [chores.id]})
    task_writer.create_task(repo, owner_id, {"title": "Elsewhere"})
    assert [t.id for t in labels.label_tasks(repo, Category, owner_id, home.id)] == [dishes.id]
    assert [t.id for t in labels.label_tasks(repo, Tag, owner_id, chores.id)] == [dishes.id]
