"""HTTP routes for the notes service."""

import logging

from flask import Blueprint, current_app, jsonify, request, url_for
from pydantic import ValidationError
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from notes_app.errors import InvalidNoteError, NotesError, StoreUnavailableError
from notes_app.repository import NoteRepository
from notes_app.schemas import NoteCreate, NoteOut, NoteUpdate

logger = logging.getLogger(__name__)

bp = Blueprint("notes", __name__)


def _database():
    return current_app.extensions["notes_database"]


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidNoteError("Request body must be a JSON object")
    return payload


def _serialize(note) -> dict:
    return NoteOut.model_validate(note).model_dump(mode="json")


# =====================
# NOTES
# =====================

@bp.get("/notes")
def list_notes():
    with _database().session() as session:
        notes = [_serialize(note) for note in NoteRepository(session).list()]
    return jsonify(notes)


@bp.post("/notes")
def create_note():
    payload = NoteCreate.model_validate(_json_body())
    with _database().session() as session:
        note = _serialize(NoteRepository(session).create(**payload.model_dump()))
    response = jsonify(note)
    response.status_code = 201
    response.headers["Location"] = url_for("notes.get_note", note_id=note["id"])
    return response


@bp.get("/notes/<int:note_id>")
def get_note(note_id: int):
    with _database().session() as session:
        note = _serialize(NoteRepository(session).get(note_id))
    return jsonify(note)


@bp.route("/notes/<int:note_id>", methods=["PUT", "PATCH"])
def update_note(note_id: int):
    payload = NoteUpdate.model_validate(_json_body())
    with _database().session() as session:
        note = _serialize(NoteRepository(session).update(note_id, **payload.changes()))
    return jsonify(note)


@bp.delete("/notes/<int:note_id>")
def delete_note(note_id: int):
    with _database().session() as session:
        NoteRepository(session).delete(note_id)
    return "", 204


# =====================
# HEALTH
# =====================

@bp.get("/health")
def health():
    """Liveness; used by the load balancer target group."""
    return jsonify({"status": "ok"})


@bp.get("/health/ready")
def ready():
    """Readiness; fails while the store is unreachable."""
    if not _database().ping():
        raise StoreUnavailableError("Database is unreachable")
    return jsonify({"status": "ok", "database": "ok"})


# =====================
# ERROR HANDLERS
# =====================

def register_error_handlers(app) -> None:

    @app.errorhandler(NotesError)
    def handle_notes_error(e: NotesError):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(e: ValidationError):
        error = InvalidNoteError(
            "Invalid note",
            details=e.errors(include_url=False, include_context=False, include_input=False),
        )
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(OperationalError)
    @app.errorhandler(InterfaceError)
    def handle_store_unavailable(e: SQLAlchemyError):
        logger.exception("Database unreachable")
        error = StoreUnavailableError("Database is unreachable")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e: SQLAlchemyError):
        logger.exception("Database error")
        error = NotesError("Database error")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(e: HTTPException):
        error = e.name.lower().replace(" ", "_")
        return jsonify({"error": error, "message": e.description}), e.code
