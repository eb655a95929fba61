"""HTTP tests for upload, view and file routes."""

from urllib.parse import parse_qs, urlparse

import pytest

from pdfshare_backend.security import new_access_token, new_artifact_id
from tests.conftest import PDF_BYTES


DENIED = "Not found or expired"


def _upload(client, name="report.pdf", data=PDF_BYTES, content_type="application/pdf", minutes=None):
    form = {} if minutes is None else {"expiresMinutes": minutes}
    return client.post("/upload", files={"file": (name, data, content_type)}, data=form)


def _link(response):
    url = urlparse(response.json()["viewer"])
    return url.path.rsplit("/", 1)[-1], parse_qs(url.query)["t"][0]


class TestUpload:
    def test_returns_viewer_link_and_expiry(self, client, clock) -> None:
        response = _upload(client, minutes="10")
        assert response.status_code == 200
        body = response.json()
        assert body["viewer"].startswith("https://share.test/view/")
        assert body["expiresAt"] == clock() + 10 * 60_000

    def test_default_lifetime(self, client, clock) -> None:
        assert _upload(client).json()["expiresAt"] == clock() + 60 * 60_000

    @pytest.mark.parametrize("minutes,effective", [("0", 1), ("-5", 1), ("soon", 60)])
    def test_lifetime_clamp(self, client, clock, minutes, effective) -> None:
        assert _upload(client, minutes=minutes).json()["expiresAt"] == clock() + effective * 60_000

    def test_missing_file(self, client, app) -> None:
        response = client.post("/upload", data={"expiresMinutes": "5"})
        assert response.status_code == 400
        assert response.json() == {"error": "No file uploaded"}
        assert len(app.state.registry) == 0

    def test_non_pdf_rejected_without_leftovers(self, client, app) -> None:
        response = _upload(client, name="notes.txt", data=b"hello", content_type="text/plain")
        assert response.status_code == 400
        assert response.json() == {"error": "Only PDF allowed"}
        assert list(app.state.store.root.iterdir()) == []
        assert len(app.state.registry) == 0

    def test_too_large(self, client, app) -> None:
        response = _upload(client, data=b"x" * (1024 * 1024 + 1))
        assert response.status_code == 413
        assert response.json() == {"error": "File too large"}
        assert list(app.state.store.root.iterdir()) == []

    def test_record_is_resolvable_immediately(self, client) -> None:
        artifact_id, token = _link(_upload(client))
        assert client.get(f"/view/{artifact_id}", params={"t": token}).status_code == 200


class TestFile:
    def test_round_trip(self, client) -> None:
        artifact_id, token = _link(_upload(client, name="Quarterly.pdf"))
        response = client.get(f"/file/{artifact_id}", params={"t": token})
        assert response.status_code == 200
        assert response.content == PDF_BYTES
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["content-disposition"] == 'inline; filename="Quarterly.pdf"'
        assert response.headers["cache-control"] == "no-store"
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_quotes_are_stripped_from_filename(self, client) -> None:
        artifact_id, token = _link(_upload(client, name='a"b".pdf'))
        response = client.get(f"/file/{artifact_id}", params={"t": token})
        assert response.headers["content-disposition"] == 'inline; filename="ab.pdf"'

    def test_sweep_between_check_and_send_still_serves_bytes(self, client, app, clock, monkeypatch) -> None:
        artifact_id, token = _link(_upload(client, minutes="1"))
        guard = app.state.guard
        real_open_file = guard.open_file

        def open_then_sweep(*args, **kwargs):
            grant = real_open_file(*args, **kwargs)
            clock.advance(60_001)
            app.state.sweeper.sweep()
            return grant

        monkeypatch.setattr(guard, "open_file", open_then_sweep)
        response = client.get(f"/file/{artifact_id}", params={"t": token})

        assert response.status_code == 200
        assert response.content == PDF_BYTES
        assert response.headers["content-length"] == str(len(PDF_BYTES))
        assert artifact_id not in app.state.registry

    def test_missing_bytes_look_like_not_found(self, client, app) -> None:
        artifact_id, token = _link(_upload(client))
        app.state.store.delete(app.state.registry.get(artifact_id).stored_name)
        response = client.get(f"/file/{artifact_id}", params={"t": token})
        assert response.status_code == 404
        assert response.text == DENIED


class TestView:
    def test_viewer_page(self, client) -> None:
        artifact_id, token = _link(_upload(client))
        response = client.get(f"/view/{artifact_id}", params={"t": token})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert f'src="../file/{artifact_id}?t={token}"' in response.text
        assert "contextmenu" in response.text

        csp = response.headers["content-security-policy"]
        assert "frame-ancestors 'none'" in csp
        assert "default-src 'self'" in csp
        nonce = csp.split("'nonce-", 1)[1].split("'", 1)[0]
        assert f'<script nonce="{nonce}">' in response.text

    def test_nonce_changes_per_response(self, client) -> None:
        artifact_id, token = _link(_upload(client))
        first = client.get(f"/view/{artifact_id}", params={"t": token}).headers["content-security-policy"]
        second = client.get(f"/view/{artifact_id}", params={"t": token}).headers["content-security-policy"]
        assert first != second


class TestUniformDenial:
    @pytest.mark.parametrize("route", ["view", "file"])
    def test_wrong_token_equals_unknown_id(self, client, route) -> None:
        artifact_id, token = _link(_upload(client))
        wrong = client.get(f"/{route}/{artifact_id}", params={"t": new_access_token()})
        missing_token = client.get(f"/{route}/{artifact_id}")
        unknown = client.get(f"/{route}/{new_artifact_id()}", params={"t": token})
        garbage = client.get(f"/{route}/not-an-id", params={"t": token})

        for response in (wrong, missing_token, unknown, garbage):
            assert response.status_code == 404
            assert response.text == DENIED
            assert response.headers["content-type"].startswith("text/plain")

    @pytest.mark.parametrize("route", ["view", "file"])
    def test_expired_equals_unknown_id(self, client, clock, route) -> None:
        artifact_id, token = _link(_upload(client, minutes="1"))
        clock.advance(60_000)
        assert client.get(f"/{route}/{artifact_id}", params={"t": token}).status_code == 200

        clock.advance(1)
        expired = client.get(f"/{route}/{artifact_id}", params={"t": token})
        unknown = client.get(f"/{route}/{new_artifact_id()}", params={"t": token})
        assert (expired.status_code, expired.text) == (unknown.status_code, unknown.text) == (404, DENIED)


class TestSweepConsistency:
    def test_sweep_removes_everything(self, client, app, clock) -> None:
        artifact_id, token = _link(_upload(client, minutes="1"))
        stored_name = app.state.registry.get(artifact_id).stored_name
        clock.advance(60_001)

        assert app.state.sweeper.sweep().expired == 1

        assert not app.state.store.exists(stored_name)
        assert artifact_id not in app.state.registry
        after = client.get(f"/file/{artifact_id}", params={"t": token})
        never = client.get(f"/file/{new_artifact_id()}", params={"t": token})
        assert (after.status_code, after.text) == (never.status_code, never.text)


class TestCors:
    def test_preflight(self, client) -> None:
        response = client.options(
            "/upload",
            headers={
                "Origin": "https://elsewhere.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]

    def test_simple_request(self, client) -> None:
        response = client.get(f"/view/{new_artifact_id()}", headers={"Origin": "https://elsewhere.example"})
        assert response.headers["access-control-allow-origin"] == "*"


class TestLifespan:
    def test_startup_reconciles_and_sweeps(self, tmp_path, clock) -> None:
        from fastapi.testclient import TestClient

        from server import create_app

        app = create_app(upload_dir=tmp_path / "uploads", meta_file=tmp_path / "metadata.json", clock=clock)
        with TestClient(app) as client:
            artifact_id, _ = _link(_upload(client, minutes="1"))
        assert artifact_id in app.state.registry

        clock.advance(60_001)
        restarted = create_app(upload_dir=tmp_path / "uploads", meta_file=tmp_path / "metadata.json", clock=clock)
        assert artifact_id in restarted.state.registry
        with TestClient(restarted):
            assert artifact_id not in restarted.state.registry
        assert list(restarted.state.store.iter_names()) == []
