from datetime import datetime
from typing import List, Optional

import pytest

from src.api.models import NoteEntity
from src.api.repositories import Repository, StorageError


def create_note_payload(title="Test Note", content="Some content"):
    return {"title": title, "content": content}


def create_note(client, **kwargs) -> dict:
    res = client.post("/api/notes", json=create_note_payload(**kwargs))
    assert res.status_code == 201
    return res.json()


def parse_ts(value: str) -> datetime:
    # Pydantic renders UTC as a trailing "Z"
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def assert_note_shape(note: dict):
    for key in ["id", "title", "content", "created_at", "updated_at"]:
        assert key in note
    assert isinstance(note["id"], int)
    assert isinstance(note["title"], str)
    assert isinstance(note["content"], str)
    # Timestamps are ISO8601 strings
    assert parse_ts(note["created_at"]) <= parse_ts(note["updated_at"])


def list_notes(client) -> List[dict]:
    res = client.get("/api/notes")
    assert res.status_code == 200
    return res.json()


class TestHealthAndClient:
    def test_health_check(self, client):
        res = client.get("/health")
        assert res.status_code == 200
        data = res.json()
        assert data["message"] == "Healthy"
        assert data["backend"] == "sqlite"

    def test_index_page(self, client):
        res = client.get("/")
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/html")
        assert '<script src="/app.js">' in res.text

    def test_app_script(self, client):
        res = client.get("/app.js")
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("application/javascript")
        assert "/api/notes" in res.text


class TestNotesCRUD:
    def test_list_empty(self, client):
        assert list_notes(client) == []

    def test_create_round_trip(self, client):
        note = create_note(client, title="A", content="B")
        assert_note_shape(note)
        assert note["title"] == "A"
        assert note["content"] == "B"
        assert note["created_at"] == note["updated_at"]

        res = client.get(f"/api/notes/{note['id']}")
        assert res.status_code == 200
        assert res.json() == note

    def test_create_trims_title(self, client):
        note = create_note(client, title="  Groceries  ", content="milk")
        assert note["title"] == "Groceries"

    def test_get_not_found(self, client):
        res = client.get("/api/notes/999999")
        assert res.status_code == 404
        assert res.json()["detail"] == "Note not found"

    def test_update_preserves_unset_fields(self, client):
        note = create_note(client, title="Title", content="Old")

        res = client.put(f"/api/notes/{note['id']}", json={"content": "New"})
        assert res.status_code == 200
        updated = res.json()
        assert updated["id"] == note["id"]
        assert updated["title"] == "Title"
        assert updated["content"] == "New"
        assert updated["created_at"] == note["created_at"]
        assert parse_ts(updated["updated_at"]) > parse_ts(updated["created_at"])

    def test_update_with_empty_body_still_bumps_updated_at(self, client):
        note = create_note(client)
        res = client.put(f"/api/notes/{note['id']}", json={})
        assert res.status_code == 200
        updated = res.json()
        assert updated["title"] == note["title"]
        assert updated["content"] == note["content"]
        assert parse_ts(updated["updated_at"]) > parse_ts(note["updated_at"])

    def test_update_null_field_is_ignored(self, client):
        note = create_note(client, title="Keep", content="Body")
        res = client.put(f"/api/notes/{note['id']}", json={"title": None, "content": "Changed"})
        assert res.status_code == 200
        assert res.json()["title"] == "Keep"

    def test_update_not_found(self, client):
        res = client.put("/api/notes/424242", json={"title": "Nope"})
        assert res.status_code == 404
        assert res.json()["detail"] == "Note not found"

    def test_delete_note(self, client):
        note = create_note(client, title="ToDelete")

        res_del = client.delete(f"/api/notes/{note['id']}")
        assert res_del.status_code == 200
        assert res_del.json() == {"message": "Note deleted successfully"}

        # Subsequent get is 404
        assert client.get(f"/api/notes/{note['id']}").status_code == 404
        # Deleting again is a not-found outcome, not a server error
        res_again = client.delete(f"/api/notes/{note['id']}")
        assert res_again.status_code == 404
        assert res_again.json()["detail"] == "Note not found"

    def test_list_orders_by_most_recent_update(self, client):
        first = create_note(client, title="first")
        second = create_note(client, title="second")
        third = create_note(client, title="third")
        client.put(f"/api/notes/{first['id']}", json={"content": "touched"})

        ids = [n["id"] for n in list_notes(client)]
        assert ids == [first["id"], third["id"], second["id"]]


class TestSearch:
    def seed(self, client):
        shopping = create_note(client, title="Shopping List", content="bread")
        groceries = create_note(client, title="Groceries", content="milk and eggs")
        return shopping, groceries

    def test_search_title_case_insensitive(self, client):
        shopping, _ = self.seed(client)
        res = client.get("/api/notes/search/list")
        assert res.status_code == 200
        assert [n["id"] for n in res.json()] == [shopping["id"]]

    def test_search_content_case_insensitive(self, client):
        _, groceries = self.seed(client)
        res = client.get("/api/notes/search/EGGS")
        assert res.status_code == 200
        assert [n["id"] for n in res.json()] == [groceries["id"]]

    def test_search_query_is_percent_decoded(self, client):
        _, groceries = self.seed(client)
        res = client.get("/api/notes/search/milk%20and")
        assert res.status_code == 200
        assert [n["id"] for n in res.json()] == [groceries["id"]]

    def test_search_query_may_contain_slash(self, client):
        note = create_note(client, title="Dates", content="due 10/18")
        self.seed(client)
        res = client.get("/api/notes/search/10%2F18")
        assert res.status_code == 200
        assert [n["id"] for n in res.json()] == [note["id"]]

    def test_search_wildcards_are_literal(self, client):
        self.seed(client)
        discount = create_note(client, title="Sale", content="100% off")
        res = client.get("/api/notes/search/%25")
        assert res.status_code == 200
        assert [n["id"] for n in res.json()] == [discount["id"]]

        res = client.get("/api/notes/search/_")
        assert res.json() == []

    def test_blank_search_lists_all(self, client):
        shopping, groceries = self.seed(client)
        expected = [groceries["id"], shopping["id"]]
        for path in ("/api/notes/search", "/api/notes/search/", "/api/notes/search/%20%20"):
            res = client.get(path)
            assert res.status_code == 200, path
            assert [n["id"] for n in res.json()] == expected

    def test_bare_search_ignores_query_string(self, client):
        shopping, groceries = self.seed(client)
        res = client.get("/api/notes/search", params={"query": "eggs"})
        assert res.status_code == 200
        assert [n["id"] for n in res.json()] == [groceries["id"], shopping["id"]]

    def test_search_no_match(self, client):
        self.seed(client)
        res = client.get("/api/notes/search/nothing-like-this")
        assert res.status_code == 200
        assert res.json() == []


class TestValidationErrors:
    def test_create_empty_title_rejected(self, client):
        res = client.post("/api/notes", json={"title": "", "content": "x"})
        assert res.status_code == 400
        body = res.json()
        assert body["error"] == "ValidationError"
        assert body["message"] == "Title and content are required"
        assert isinstance(body["detail"], list)
        assert list_notes(client) == []

    def test_create_blank_content_rejected(self, client):
        res = client.post("/api/notes", json={"title": "x", "content": "   "})
        assert res.status_code == 400
        assert list_notes(client) == []

    def test_create_missing_field_rejected(self, client):
        res = client.post("/api/notes", json={"title": "x"})
        assert res.status_code == 400
        assert res.json()["message"] == "Title and content are required"

    def test_create_malformed_json_rejected(self, client):
        res = client.post(
            "/api/notes", content="{not json", headers={"Content-Type": "application/json"}
        )
        assert res.status_code == 400

    def test_update_blank_title_rejected(self, client):
        note = create_note(client, title="Original")
        res = client.put(f"/api/notes/{note['id']}", json={"title": "  "})
        assert res.status_code == 400
        assert client.get(f"/api/notes/{note['id']}").json() == note

    def test_invalid_id_is_bad_request(self, client):
        for method in ("get", "delete"):
            res = getattr(client, method)("/api/notes/abc")
            assert res.status_code == 400, method
            assert res.json()["message"] == "Invalid note ID"
        res = client.put("/api/notes/abc", json={"title": "x"})
        assert res.status_code == 400
        assert res.json()["message"] == "Invalid note ID"

    def test_out_of_range_id_is_bad_request(self, client):
        res = client.get(f"/api/notes/{2**63}")
        assert res.status_code == 400

    def test_unencodable_input_is_bad_request(self, client):
        # A lone surrogate escape is valid JSON but not a valid string
        res = client.post(
            "/api/notes",
            content='{"title": "\\ud800", "content": "x"}',
            headers={"Content-Type": "application/json"},
        )
        assert res.status_code == 400
        body = res.json()
        assert body["message"] == "Title and content are required"
        assert all("input" not in e and "ctx" not in e for e in body["detail"])
        assert list_notes(client) == []


class TestRouting:
    def test_unknown_path_is_not_found(self, client):
        res = client.get("/api/unknown")
        assert res.status_code == 404

    def test_unknown_method_on_known_path_is_not_found(self, client):
        note = create_note(client)
        assert client.patch(f"/api/notes/{note['id']}", json={"title": "x"}).status_code == 404
        assert client.delete("/api/notes").status_code == 404


class FailingRepository(Repository):
    """Repository whose every operation fails like a broken storage engine."""

    def _fail(self, *args, **kwargs):
        raise StorageError("disk I/O error at /var/lib/notes.db")

    def list_all(self) -> List[NoteEntity]:
        return self._fail()

    def get(self, note_id: int) -> Optional[NoteEntity]:
        return self._fail()

    def create(self, data) -> NoteEntity:
        return self._fail()

    def update(self, note_id: int, data) -> Optional[NoteEntity]:
        return self._fail()

    def delete(self, note_id: int) -> bool:
        return self._fail()

    def search(self, term: str) -> List[NoteEntity]:
        return self._fail()


class TestStorageFailures:
    def test_storage_errors_become_generic_500(self, app, client):
        app.state.repository = FailingRepository()
        cases = [
            (client.get("/api/notes"), "Failed to fetch notes"),
            (client.get("/api/notes/1"), "Failed to fetch note"),
            (client.post("/api/notes", json=create_note_payload()), "Failed to create note"),
            (client.put("/api/notes/1", json={"title": "x"}), "Failed to update note"),
            (client.delete("/api/notes/1"), "Failed to delete note"),
            (client.get("/api/notes/search/x"), "Failed to search notes"),
        ]
        for res, message in cases:
            assert res.status_code == 500
            assert res.json() == {"detail": message}
            assert "disk" not in res.text

    def test_storage_errors_are_logged(self, app, client, caplog):
        app.state.repository = FailingRepository()
        with caplog.at_level("ERROR"):
            client.get("/api/notes")
        assert any("Failed to list notes" in r.getMessage() for r in caplog.records)

    def test_validation_happens_before_storage(self, app, client):
        app.state.repository = FailingRepository()
        assert client.get("/api/notes/abc").status_code == 400
        assert client.post("/api/notes", json={"title": "", "content": "x"}).status_code == 400


class ExplodingRepository(FailingRepository):
    """Repository that fails with an unexpected, non-storage error."""

    def _fail(self, *args, **kwargs):
        raise RuntimeError("unexpected")


class TestRequestLogging:
    def test_requests_are_logged_with_status(self, client, caplog):
        with caplog.at_level("INFO", logger="src.api.main"):
            client.get("/api/notes/999")
        assert any(
            r.levelname == "WARNING" and r.getMessage().startswith("GET /api/notes/999 404")
            for r in caplog.records
        )

    def test_unhandled_errors_are_still_logged(self, app, client, caplog):
        app.state.repository = ExplodingRepository()
        with caplog.at_level("ERROR", logger="src.api.main"):
            with pytest.raises(RuntimeError):
                client.get("/api/notes")
        assert any(
            r.levelname == "ERROR" and r.getMessage().startswith("GET /api/notes 500")
            for r in caplog.records
        )

    def test_run_disables_uvicorn_access_log(self, monkeypatch):
        import uvicorn

        from src.api import main

        calls = []
        monkeypatch.setattr(main, "configure_logging", lambda level: None)
        monkeypatch.setattr(uvicorn, "run", lambda *args, **kwargs: calls.append(kwargs))
        main.run()
        assert len(calls) == 1
        assert calls[0]["access_log"] is False
        assert calls[0]["port"] == main.app.state.settings.port
