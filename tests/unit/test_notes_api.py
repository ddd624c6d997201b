from flask import request
from sqlalchemy.exc import OperationalError

from notes_app.repository import NoteRepository


def create(client, **fields):
    response = client.post("/notes", json=fields)
    assert response.status_code == 201
    return response.get_json()


def test_create_then_read_returns_same_fields(client):
    note = create(client, title="Groceries", content="buy milk")

    response = client.get(f"/notes/{note['id']}")

    assert response.status_code == 200
    body = response.get_json()
    assert body["title"] == "Groceries"
    assert body["content"] == "buy milk"
    assert body["created_at"] and body["updated_at"]


def test_create_sets_location_header(client):
    response = client.post("/notes", json={"content": "buy milk"})

    assert response.status_code == 201
    assert response.headers["Location"].endswith(f"/notes/{response.get_json()['id']}")


def test_crud_walkthrough(client):
    note = create(client, content="buy milk")
    assert note["id"] == 1
    assert note["content"] == "buy milk"
    assert note["title"] is None

    listed = client.get("/notes").get_json()
    assert [item["id"] for item in listed] == [1]

    assert client.delete("/notes/1").status_code == 204
    assert client.get("/notes").get_json() == []


def test_list_is_ordered_by_id(client):
    for content in ("first", "second", "third"):
        create(client, content=content)

    listed = client.get("/notes").get_json()

    assert [item["content"] for item in listed] == ["first", "second", "third"]
    assert [item["id"] for item in listed] == sorted(item["id"] for item in listed)


def test_update_then_read_reflects_changes(client):
    note = create(client, title="Groceries", content="buy milk")

    response = client.put(f"/notes/{note['id']}", json={"content": "buy oat milk"})
    assert response.status_code == 200

    body = client.get(f"/notes/{note['id']}").get_json()
    assert body["content"] == "buy oat milk"
    # Fields that were not sent stay as they were.
    assert body["title"] == "Groceries"


def test_patch_can_clear_title(client):
    note = create(client, title="Groceries", content="buy milk")

    response = client.patch(f"/notes/{note['id']}", json={"title": None})

    assert response.status_code == 200
    assert response.get_json()["title"] is None
    assert response.get_json()["content"] == "buy milk"


def test_update_missing_note_is_not_found(client):
    response = client.put("/notes/42", json={"content": "anything"})

    assert response.status_code == 404
    assert response.get_json()["error"] == "not_found"


def test_read_missing_note_is_not_found(client):
    response = client.get("/notes/42")

    assert response.status_code == 404
    assert response.get_json() == {"error": "not_found", "message": "Note 42 not found"}


def test_delete_then_read_is_not_found(client):
    note = create(client, content="buy milk")

    assert client.delete(f"/notes/{note['id']}").status_code == 204
    assert client.get(f"/notes/{note['id']}").status_code == 404


def test_second_delete_is_not_found(client):
    note = create(client, content="buy milk")
    client.delete(f"/notes/{note['id']}")

    response = client.delete(f"/notes/{note['id']}")

    assert response.status_code == 404
    assert response.get_json()["error"] == "not_found"


def test_create_requires_content(client):
    for body in ({}, {"content": ""}, {"content": "   "}, {"title": "only a title"}):
        response = client.post("/notes", json=body)
        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_request"


def test_create_rejects_unknown_fields(client):
    response = client.post("/notes", json={"content": "buy milk", "owner": "me"})

    assert response.status_code == 400
    assert response.get_json()["details"][0]["loc"] == ["owner"]


def test_create_rejects_non_object_body(client):
    response = client.post("/notes", data="buy milk", content_type="text/plain")
    assert response.status_code == 400

    response = client.post("/notes", json=["buy milk"])
    assert response.status_code == 400


def test_update_requires_a_field(client):
    note = create(client, content="buy milk")

    response = client.patch(f"/notes/{note['id']}", json={})

    assert response.status_code == 400


def test_update_rejects_null_content(client):
    note = create(client, content="buy milk")

    response = client.patch(f"/notes/{note['id']}", json={"content": None})

    assert response.status_code == 400


def test_unknown_route_returns_json(client):
    response = client.get("/nope")

    assert response.status_code == 404
    assert response.get_json()["error"] == "not_found"


def test_wrong_method_returns_json(client):
    response = client.post("/notes/1", json={"content": "x"})

    assert response.status_code == 405
    assert response.get_json()["error"] == "method_not_allowed"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_ready_when_store_answers(client):
    response = client.get("/health/ready")

    assert response.status_code == 200
    assert response.get_json()["database"] == "ok"


def test_ready_fails_when_store_is_unreachable(client, database, monkeypatch):
    monkeypatch.setattr(database, "ping", lambda: False)

    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.get_json()["error"] == "store_unavailable"


def test_store_failure_surfaces_as_server_error(client, monkeypatch):
    def fail(self):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(NoteRepository, "list", fail)

    response = client.get("/notes")

    assert response.status_code == 503
    assert response.get_json()["error"] == "store_unavailable"


def test_failed_write_is_rolled_back(client, database, monkeypatch):
    original = NoteRepository.create

    def create_then_fail(self, **fields):
        original(self, **fields)
        raise OperationalError("INSERT", {}, Exception("connection lost"))

    monkeypatch.setattr(NoteRepository, "create", create_then_fail)

    response = client.post("/notes", json={"content": "buy milk"})
    assert response.status_code == 503

    monkeypatch.undo()
    assert client.get("/notes").get_json() == []


def test_forwarded_headers_are_trusted(app):
    seen = {}

    @app.get("/_remote")
    def remote():
        seen["addr"] = request.remote_addr
        seen["scheme"] = request.scheme
        return ""

    app.test_client().get("/_remote", headers={
        "X-Forwarded-For": "198.51.100.7, 10.0.0.20",
        "X-Forwarded-Proto": "https",
    })

    assert seen == {"addr": "198.51.100.7", "scheme": "https"}


def test_content_is_bounded_by_column_size(client):
    assert client.post("/notes", json={"content": "a" * 65_535}).status_code == 201

    for content in ("a" * 65_536, "é" * 40_000):
        response = client.post("/notes", json={"content": content})
        assert response.status_code == 400
        assert response.get_json()["details"][0]["loc"] == ["content"]


def test_update_content_is_bounded_by_column_size(client):
    note = create(client, content="buy milk")

    response = client.patch(f"/notes/{note['id']}", json={"content": "a" * 65_536})

    assert response.status_code == 400
    assert client.get(f"/notes/{note['id']}").get_json()["content"] == "buy milk"
