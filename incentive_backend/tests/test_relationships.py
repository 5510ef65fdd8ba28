import pytest

from incentive_backend.core import labels
from incentive_backend.core.errors import InvalidReference
from incentive_backend.core.relationships import resolve_category, resolve_tags
from incentive_database.models import Category, Tag


def test_resolve_category_owned(repo, owner_id):
    work = labels.create_label(repo, Category, owner_id, {"name": "Work", "color": "#4CAF50"})
    assert resolve_category(repo, owner_id, work.id).name == "Work"


def test_resolve_category_rejects_foreign_and_unknown(repo, owner_id, other_id):
    theirs = labels.create_label(repo, Category, other_id, {"name": "Theirs"})
    with pytest.raises(InvalidReference):
        resolve_category(repo, owner_id, theirs.id)
    with pytest.raises(InvalidReference):
        resolve_category(repo, owner_id, "nonexistent-id")


def test_resolve_tags_empty_means_no_tags(repo, owner_id):
    assert resolve_tags(repo, owner_id, []) == []
    assert resolve_tags(repo, owner_id, None) == []


def test_resolve_tags_keeps_request_order_and_collapses_repeats(repo, owner_id):
    a = labels.create_label(repo, Tag, owner_id, {"name": "a"})
    b = labels.create_label(repo, Tag, owner_id, {"name": "b"})
    resolved = resolve_tags(repo, owner_id, [b.id, a.id, b.id])
    assert [t.id for t in resolved] == [b.id, a.id]


def test_resolve_tags_partial_match_is_a_failure(repo, owner_id, other_id):
    mine = labels.create_label(repo, Tag, owner_id, {"name": "mine"})
    theirs = labels.create_label(repo, Tag, other_id, {"name": "theirs"})
    with pytest.raises(InvalidReference):
        resolve_tags(repo, owner_id, [mine.id, theirs.id])
    with pytest.raises(InvalidReference):
        resolve_tags(repo, owner_id, [mine.id, "nonexistent-id"])
