"""Ownership checks for the category and tags a task points at.

Both resolvers are read-only and all-or-nothing: they either return every
requested entity or raise ``InvalidReference`` without touching anything.
"""

import logging

from incentive_database.models import Category

from .errors import InvalidReference

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def resolve_category(repo, user_id, category_id):
    """Return the category ``category_id`` if ``user_id`` owns it."""
    category = repo.get_owned(Category, category_id, user_id)
    if category is None:
        logger.warning("Rejected category %s for user %s", category_id, user_id)
        raise InvalidReference("Category not found or not owned by the user.")
    return category


# PUBLIC_INTERFACE
def resolve_tags(repo, user_id, tag_ids):
    """
    Return the tags for ``tag_ids`` in request order. An empty list means "no tags".
    Repeated ids count once; any id that does not resolve to one of the user's
    tags fails the whole set.
    """
    wanted = list(dict.fromkeys(tag_ids or []))
    if not wanted:
        return []
    found = {tag.id: tag for tag in repo.find_tags(user_id, wanted)}
    if len(found) != len(wanted):
        missing = [tag_id for tag_id in wanted if tag_id not in found]
        logger.warning("Rejected tags %s for user %s", missing, user_id)
        raise InvalidReference("One or more tags were not found or are not owned by the user.")
    return [found[tag_id] for tag_id in wanted]
