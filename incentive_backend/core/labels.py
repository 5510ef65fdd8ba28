"""Category and tag CRUD. Both are a name plus a color owned by one user."""

import logging

from incentive_database.models import DEFAULT_CATEGORY_COLOR, DEFAULT_TAG_COLOR, Category, Tag

from . import cascade
from .errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

_DEFAULT_COLORS = {Category: DEFAULT_CATEGORY_COLOR, Tag: DEFAULT_TAG_COLOR}
_LABELS = {Category: "Category", Tag: "Tag"}


def _clean_name(name):
    if name is None or not str(name).strip():
        raise ValidationError("Name is required.")
    return str(name).strip()


def get_label(repo, model, user_id, label_id):
    label = repo.get_owned(model, label_id, user_id)
    if label is None:
        raise NotFound(f"{_LABELS[model]} not found or not owned by the user.")
    return label


def list_labels(repo, model, user_id):
    if model is Category:
        return repo.list_categories(user_id)
    return repo.list_tags(user_id)


# PUBLIC_INTERFACE
def create_label(repo, model, user_id, data):
    """Create a category or tag; ``color`` falls back to the model's default."""
    name = _clean_name(data.get("name"))
    with repo.transaction():
        label = model(name=name, color=data.get("color") or _DEFAULT_COLORS[model], user_id=user_id)
        repo.add(label)
    logger.info("Created %s %s for user %s", _LABELS[model].lower(), label.id, user_id)
    return label


# PUBLIC_INTERFACE
def update_label(repo, model, user_id, label_id, changes):
    with repo.transaction():
        label = get_label(repo, model, user_id, label_id)
        if "name" in changes:
            label.name = _clean_name(changes["name"])
        if "color" in changes and changes["color"]:
            label.color = changes["color"]
        repo.save(label)
        return label


# PUBLIC_INTERFACE
def delete_label(repo, model, user_id, label_id):
    if model is Category:
        return cascade.delete_category(repo, user_id, label_id)
    return cascade.delete_tag(repo, user_id, label_id)


# PUBLIC_INTERFACE
def label_tasks(repo, model, user_id, label_id):
    """Tasks that reference the given category or carry the given tag."""
    get_label(repo, model, user_id, label_id)
    if model is Category:
        return repo.list_tasks(user_id, category_id=label_id)
    return repo.list_tasks(user_id, tag_id=label_id)
