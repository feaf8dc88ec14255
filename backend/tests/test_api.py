"""
Tests for the HTTP API.
"""

import base64
import csv
import io

import pytest
from fastapi.testclient import TestClient

import main
from conftest import FakeExtractor
from session import ExtractionSession


@pytest.fixture
def fake_extractor():
    return FakeExtractor(
        {
            b"alice": [{"Name": "Alice", "नाम": "Alice", "Comment": 'He said, "hi"\nBye'}],
            b"bob": [{"Name": "Bob", "नाम": "Bob"}],
            b"broken": main.ExtractionError("Invalid data format received from AI. Expected an array."),
        },
        headers=["Name", "Comment"],
    )


@pytest.fixture
def client(fake_extractor, monkeypatch):
    monkeypatch.setattr(main, "extractor", fake_extractor)
    monkeypatch.setattr(main, "session", ExtractionSession(fake_extractor))
    return TestClient(main.app)


def upload(client, *files, **data):
    return client.post(
        "/api/documents",
        files=[("files", (name, content, mime_type)) for name, content, mime_type in files],
        data=data,
    )


class TestHealth:
    def test_root(self, client):
        assert client.get("/").status_code == 200

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["model_configured"] is True


class TestUpload:
    def test_upload_and_process(self, client):
        response = upload(
            client,
            ("alice.png", b"alice", "image/png"),
            ("bob.pdf", b"bob", "application/pdf"),
            ("broken.pdf", b"broken", "application/pdf"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["added"] == 3
        assert body["state"]["completed"] == 2
        assert body["state"]["failed"] == 1
        assert [c["display_key"] for c in body["state"]["columns"]] == ["Name/नाम", "Comment"]
        failed = [d for d in body["state"]["documents"] if d["status"] == "error"]
        assert failed[0]["filename"] == "broken.pdf"
        assert "Expected an array" in failed[0]["error"]

    def test_duplicate_upload_reported(self, client):
        upload(client, ("alice.png", b"alice", "image/png"))

        body = upload(client, ("alice.png", b"alice", "image/png")).json()

        assert body["added"] == 0
        assert body["skipped"] == ["alice.png"]

    def test_instructions_forwarded(self, client, fake_extractor):
        upload(client, ("alice.png", b"alice", "image/png"), instructions="Use ISO dates")

        assert fake_extractor.calls[0][2] == "Use ISO dates"

    def test_unsupported_type_rejected(self, client):
        response = upload(client, ("notes.txt", b"hello", "text/plain"))

        assert response.status_code == 400
        assert "not supported" in response.json()["detail"]

    def test_mime_type_guessed_from_filename(self, client):
        response = upload(client, ("alice.png", b"alice", "application/octet-stream"))

        assert response.status_code == 200
        assert response.json()["state"]["documents"][0]["mime_type"] == "image/png"

    def test_empty_file_rejected(self, client):
        response = upload(client, ("empty.png", b"", "image/png"))

        assert response.status_code == 400

    def test_oversized_file_rejected(self, client, monkeypatch):
        monkeypatch.setattr(main, "MAX_FILE_SIZE_MB", 0)

        response = upload(client, ("alice.png", b"alice", "image/png"))

        assert response.status_code == 400
        assert "exceeds" in response.json()["detail"]

    def test_reset(self, client):
        upload(client, ("alice.png", b"alice", "image/png"))

        assert client.delete("/api/documents").status_code == 200
        assert client.get("/api/documents").json()["documents"] == []


class TestTableAndExport:
    @pytest.fixture
    def loaded(self, client):
        upload(client, ("alice.png", b"alice", "image/png"), ("bob.pdf", b"bob", "application/pdf"))
        return client

    def test_table(self, loaded):
        body = loaded.get("/api/table").json()

        assert body["headers"] == ["Document", "Name/नाम", "Comment"]
        rows = sorted(body["rows"])
        assert rows == [
            ["alice.png", "Alice", 'He said, "hi"\nBye'],
            ["bob.pdf", "Bob", "N/A"],
        ]

    def test_export_csv(self, loaded):
        response = loaded.get("/api/export")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "extracted_data.csv" in response.headers["content-disposition"]
        parsed = list(csv.reader(io.StringIO(response.text)))
        assert parsed[0] == ["Document", "Name/नाम", "Comment"]
        assert ["alice.png", "Alice", 'He said, "hi"\nBye'] in parsed[1:]

    def test_toggle_and_select(self, loaded):
        columns = loaded.get("/api/schema").json()["columns"]
        comment_id = columns[1]["id"]

        body = loaded.post(f"/api/columns/{comment_id}/toggle").json()
        assert [c["selected"] for c in body["columns"]] == [True, False]
        assert loaded.get("/api/table").json()["headers"] == ["Document", "Name/नाम"]

        loaded.delete("/api/selection")
        assert loaded.get("/api/table").json()["headers"] == ["Document"]

        loaded.post("/api/selection/all")
        assert loaded.get("/api/table").json()["headers"] == ["Document", "Name/नाम", "Comment"]

        loaded.put("/api/selection", json={"column_ids": [comment_id]})
        assert loaded.get("/api/table").json()["headers"] == ["Document", "Comment"]

    def test_unknown_column(self, loaded):
        assert loaded.post("/api/columns/missing/toggle").status_code == 404
        assert loaded.put("/api/selection", json={"column_ids": ["missing"]}).status_code == 404

    def test_reorder(self, loaded):
        ids = [c["id"] for c in loaded.get("/api/schema").json()["columns"]]

        response = loaded.put("/api/columns/order", json={"column_ids": list(reversed(ids))})

        assert response.status_code == 200
        assert loaded.get("/api/table").json()["headers"] == ["Document", "Comment", "Name/नाम"]
        assert loaded.put("/api/columns/order", json={"column_ids": ids[:1]}).status_code == 400


class TestRawExtraction:
    def test_extract(self, client):
        payload = {"image": base64.b64encode(b"bob").decode(), "mimeType": "image/png"}

        response = client.post("/api/extract", json=payload)

        assert response.status_code == 200
        assert response.json() == [{"Name": "Bob", "नाम": "Bob"}]

    def test_extract_missing_fields(self, client):
        response = client.post("/api/extract", json={"image": "YWJj"})

        assert response.status_code == 400

    def test_extract_failure(self, client):
        payload = {"image": base64.b64encode(b"broken").decode(), "mimeType": "image/png"}

        response = client.post("/api/extract", json=payload)

        assert response.status_code == 500
        assert "Expected an array" in response.json()["detail"]

    def test_suggest_headers(self, client):
        response = client.post(
            "/api/headers/suggest",
            files=[("files", ("alice.png", b"alice", "image/png"))],
        )

        assert response.status_code == 200
        assert response.json() == {"headers": ["Name", "Comment"]}
