"""Deleting a category or tag without leaving tasks pointing at it."""

import logging

from incentive_database.models import Category, Tag

from .errors import NotFound

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def delete_category(repo, user_id, category_id):
    """Null ``category_id`` on every referencing task, then remove the category."""
    with repo.transaction():
        category = repo.get_owned(Category, category_id, user_id)
        if category is None:
            raise NotFound("Category not found or not owned by the user.")
        detached = repo.detach_category(category)
        repo.delete(category)
    logger.info("Deleted category %s, detached %d task(s)", category_id, detached)
    return detached


# PUBLIC_INTERFACE
def delete_tag(repo, user_id, tag_id):
    """Unlink the tag from every task, then remove it."""
    with repo.transaction():
        tag = repo.get_owned(Tag, tag_id, user_id)
        if tag is None:
            raise NotFound("Tag not found or not owned by the user.")
        detached = repo.detach_tag(tag)
        repo.delete(tag)
    logger.info("Deleted tag %s, detached %d task(s)", tag_id, detached)
    return detached
