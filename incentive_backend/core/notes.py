import logging

from incentive_database.models import Note

from .errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


def _clean_title(title):
    if title is None or not str(title).strip():
        raise ValidationError("Title is required.")
    return str(title).strip()


def get_note(repo, user_id, note_id):
    note = repo.get_owned(Note, note_id, user_id)
    if note is None:
        raise NotFound("Note not found.")
    return note


def list_notes(repo, user_id, q=None, skip=0, limit=100):
    """Pinned notes first, then most recently updated. ``q`` matches title or content."""
    return repo.list_notes(user_id, q=q, skip=skip, limit=limit)


# PUBLIC_INTERFACE
def create_note(repo, user_id, data):
    title = _clean_title(data.get("title"))
    with repo.transaction():
        note = Note(
            title=title,
            content=data.get("content") or "",
            pinned=bool(data.get("pinned", False)),
            user_id=user_id,
        )
        repo.add(note)
    logger.info("Created note %s for user %s", note.id, user_id)
    return note


# PUBLIC_INTERFACE
def update_note(repo, user_id, note_id, changes):
    with repo.transaction():
        note = get_note(repo, user_id, note_id)
        if "title" in changes:
            note.title = _clean_title(changes["title"])
        if "content" in changes:
            note.content = changes["content"] or ""
        if "pinned" in changes and changes["pinned"] is not None:
            note.pinned = bool(changes["pinned"])
        repo.save(note)
        return note


# PUBLIC_INTERFACE
def delete_note(repo, user_id, note_id):
    with repo.transaction():
        note = get_note(repo, user_id, note_id)
        repo.delete(note)
    logger.info("Deleted note %s for user %s", note_id, user_id)
