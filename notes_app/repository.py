import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from notes_app.errors import NoteNotFoundError
from notes_app.models import Note, utcnow

logger = logging.getLogger(__name__)


class NoteRepository:
    """CRUD over the notes table within one session.

    Mutations are flushed immediately so generated ids and timestamps are
    available; committing is left to the session owner.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, content: str, title: str = None) -> Note:
        note = Note(title=title, content=content)
        self.session.add(note)
        self.session.flush()
        logger.info("Created note %s", note.id)
        return note

    def get(self, note_id: int) -> Note:
        note = self.session.get(Note, note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def list(self) -> list:
        return list(self.session.scalars(select(Note).order_by(Note.id)))

    def update(self, note_id: int, **changes) -> Note:
        note = self.get(note_id)
        for field, value in changes.items():
            setattr(note, field, value)
        note.updated_at = utcnow()
        self.session.flush()
        logger.info("Updated note %s (%s)", note_id, ", ".join(sorted(changes)))
        return note

    def delete(self, note_id: int) -> None:
        note = self.get(note_id)
        self.session.delete(note)
        self.session.flush()
        logger.info("Deleted note %s", note_id)
