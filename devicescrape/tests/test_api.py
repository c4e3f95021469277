"""Tests for the job status API."""

import pytest

from devicescrape import db
from devicescrape.app import create_app


@pytest.fixture
def client(manager):
    app = create_app(manager)
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def galaxy(site, scraper):
    site.autocomplete["Galaxy S24"] = [
        ("Samsung Galaxy S24", "samsung-galaxy-s24"),
        ("Samsung Galaxy S24 Ultra", "samsung-galaxy-s24-ultra"),
    ]
    scraper.add("samsung-galaxy-s24-ultra", "Galaxy S24 Ultra", brand="Samsung")
    return site


def _start(client, device_id="dev-1", search_string="Galaxy S24", **extra):
    return client.post("/api/jobs", json={"device_id": device_id, "search_string": search_string, **extra})


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json() == {"status": "ok"}


class TestJobLifecycle:
    def test_start_returns_job(self, client, galaxy):
        response = _start(client, device_type="smartphone")

        assert response.status_code == 202
        data = response.get_json()
        assert data["device_id"] == "dev-1"
        assert data["step"] == "selecting"
        assert data["device_type"] == "smartphone"
        assert [o["slug"] for o in data["state"]["options"]] == ["samsung-galaxy-s24", "samsung-galaxy-s24-ultra"]

    def test_get_and_list(self, client, galaxy):
        _start(client)

        assert client.get("/api/jobs/dev-1").get_json()["step"] == "selecting"
        jobs = client.get("/api/jobs").get_json()["jobs"]
        assert [j["device_id"] for j in jobs] == ["dev-1"]
        assert client.get("/api/jobs?step=error").get_json()["jobs"] == []

    def test_confirm_to_done(self, client, galaxy, llm, reply):
        _start(client)
        llm.replies.append(reply("samsung-galaxy-s24-ultra", "Galaxy S24 Ultra", brand="Samsung"))

        response = client.post("/api/jobs/dev-1/confirm", json={"slug": "samsung-galaxy-s24-ultra"})

        assert response.status_code == 202
        data = response.get_json()
        assert data["step"] == "done"
        assert data["state"]["catalogue_device_id"] == "dev-1"

    def test_retry_with_new_name(self, client, galaxy):
        _start(client, search_string="Galaxy S24 typo")

        response = client.post("/api/jobs/dev-1/retry", json={"search_string": "Galaxy S24"})

        assert response.status_code == 202
        assert response.get_json()["step"] == "selecting"
        assert response.get_json()["attempts"] == 2

    def test_search_site(self, client, galaxy, existing_device):
        _start(client, search_site=False)

        response = client.post("/api/jobs/dev-1/search")

        assert response.status_code == 202
        assert len(response.get_json()["state"]["options"]) == 2

    def test_import_existing(self, client, galaxy, existing_device):
        _start(client)

        response = client.post("/api/jobs/dev-1/import-existing", json={"slug": "samsung-galaxy-s24"})

        assert response.status_code == 200
        assert response.get_json()["state"]["catalogue_device_id"] == existing_device

    def test_conflict_and_resolve(self, client, galaxy, existing_device):
        _start(client)
        conflict = client.post("/api/jobs/dev-1/confirm", json={"slug": "samsung-galaxy-s24"}).get_json()
        assert conflict["step"] == "slug_conflict"
        assert conflict["state"]["existing_device_id"] == existing_device

        response = client.post("/api/jobs/dev-1/resolve-conflict", json={"action": "merge"})

        assert response.status_code == 202
        assert response.get_json()["step"] == "done"

    def test_cancel(self, client):
        _start(client, search_string="Nothing at all")

        response = client.delete("/api/jobs/dev-1")

        assert response.status_code == 200
        assert response.get_json() == {"device_id": "dev-1", "step": "closed"}
        assert client.get("/api/jobs/dev-1").status_code == 404


class TestErrors:
    def test_unknown_job(self, client):
        response = client.get("/api/jobs/missing")
        assert response.status_code == 404
        assert "missing" in response.get_json()["error"]

    @pytest.mark.parametrize("body", [
        {},
        {"device_id": "dev-1"},
        {"device_id": "dev-1", "search_string": "  "},
        {"device_id": 7, "search_string": "Pixel"},
        {"device_id": "dev-1", "search_string": "Pixel", "search_site": "yes"},
    ])
    def test_bad_start_request(self, client, body):
        response = client.post("/api/jobs", json=body)
        assert response.status_code == 400

    def test_busy(self, client, galaxy):
        _start(client)
        response = _start(client)
        assert response.status_code == 409

    def test_invalid_transition(self, client):
        _start(client, search_string="Nothing at all")

        response = client.post("/api/jobs/dev-1/confirm", json={"slug": "x"})

        assert response.status_code == 409
        data = response.get_json()
        assert data["from"] == "error"
        assert data["to"] == "scraping"

    def test_cancel_active_job(self, client, galaxy):
        _start(client)
        response = client.delete("/api/jobs/dev-1")
        assert response.status_code == 409
        assert response.get_json()["from"] == "selecting"

    def test_unknown_conflict_action(self, client):
        response = client.post("/api/jobs/dev-1/resolve-conflict", json={"action": "overwrite"})
        assert response.status_code == 400


class TestDeviceTypes:
    def test_defaults_plus_stored(self, client, existing_device, db_path):
        db.upsert_device(db_path, "k1", name="Kindle", device_type="e-reader")
        types = client.get("/api/device-types").get_json()["device_types"]
        assert "smartphone" in types
        assert types[-1] == "e-reader"
