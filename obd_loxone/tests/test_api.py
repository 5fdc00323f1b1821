"""Tests for the local HTTP API."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from obd_loxone.api import create_app
from obd_loxone.schemas import TelemetrySample
from obd_loxone.services import Services
from obd_loxone.units import LITERS_PER_GALLON, UNAVAILABLE


@pytest.fixture()
def client(services: Services) -> TestClient:
    return TestClient(create_app(services))


def _sample(age: timedelta, **fields) -> TelemetrySample:
    return TelemetrySample(
        capture_time=datetime.now(timezone.utc) - age,
        **fields,
    )


# ---------------------------------------------------------------------------
# /readings
# ---------------------------------------------------------------------------

class TestReadings:
    def test_empty_store(self, client: TestClient) -> None:
        resp = client.get("/readings")
        assert resp.status_code == 200
        body = resp.json()
        assert body["obd_data"] == []
        assert body["device_state"] == "Uninitialized"
        assert body["vin"] is None
        assert body["protocol_version"] is None

    def test_window_excludes_old_samples(
        self, client: TestClient, services: Services
    ) -> None:
        services.store.append(_sample(timedelta(minutes=10), engine_rpm=700))
        services.store.append(_sample(timedelta(minutes=2), engine_rpm=800))
        services.store.append(_sample(timedelta(seconds=1), engine_rpm=900))

        data = client.get("/readings").json()["obd_data"]
        assert [d["rpm"] for d in data] == [900, 800]

    def test_sample_keys_and_absent_fields(
        self, client: TestClient, services: Services
    ) -> None:
        services.store.append(
            _sample(
                timedelta(seconds=1),
                engine_rpm=2100,
                fuel_level_percent=62.0,
                tank_capacity_l=50.0,
                odometer_km=84213.4,
            )
        )
        item = client.get("/readings").json()["obd_data"][0]
        assert item["rpm"] == 2100
        assert item["fuel_level"] == 62.0
        assert item["tank_capacity"] == 50.0
        assert item["fuel_in_tank"] == 31.0
        assert item["odometer_reading"] == 84213.4
        assert "time" in item
        assert "water_temp" not in item
        assert "latitude" not in item

    def test_connection_metadata(
        self, client: TestClient, services: Services
    ) -> None:
        services.process_state.set_device_state("Connected")
        services.process_state.set_identity("1HGCM82633A004352", "ISO 15765-4 (CAN 11/500)")
        body = client.get("/readings").json()
        assert body["device_state"] == "Connected"
        assert body["vin"] == "1HGCM82633A004352"
        assert body["protocol_version"] == "ISO 15765-4 (CAN 11/500)"


# ---------------------------------------------------------------------------
# /levels and the new-reading flag
# ---------------------------------------------------------------------------

class TestLevels:
    def test_nothing_recorded_is_404(self, client: TestClient) -> None:
        assert client.get("/levels").status_code == 404

    def test_metric_entry_passes_through(self, client: TestClient) -> None:
        resp = client.post(
            "/levels",
            json={
                "main_tank_level": 40.0,
                "main_tank_level_unit": "L",
                "aux_tank_level": 10.0,
                "aux_tank_level_unit": "L",
                "main_tank_price": 1.85,
                "main_tank_price_unit": "/L",
                "odometer": 84213.4,
            },
        )
        assert resp.status_code == 200
        body = client.get("/levels").json()
        assert body == {
            "mainTankLevelLiters": 40.0,
            "auxTankLevelLiters": 10.0,
            "pricePerLiter": 1.85,
            "odometer": 84213.4,
        }

    def test_gallon_entry_is_converted(self, client: TestClient) -> None:
        client.post(
            "/levels",
            json={
                "main_tank_level": 10.0,
                "main_tank_level_unit": "gal",
                "main_tank_price": 3.785,
                "main_tank_price_unit": "/gal",
            },
        )
        body = client.get("/levels").json()
        assert body["mainTankLevelLiters"] == pytest.approx(10.0 * LITERS_PER_GALLON)
        assert body["pricePerLiter"] == pytest.approx(1.0)
        assert body["auxTankLevelLiters"] is None

    def test_latest_entry_wins(self, client: TestClient) -> None:
        client.post("/levels", json={"main_tank_level": 20.0})
        client.post("/levels", json={"main_tank_level": 35.0})
        assert client.get("/levels").json()["mainTankLevelLiters"] == 35.0

    def test_post_remembers_units_and_price(
        self, client: TestClient, services: Services
    ) -> None:
        client.post(
            "/levels",
            json={
                "main_tank_level": 10.0,
                "main_tank_level_unit": "gal",
                "main_tank_price": 4.1,
                "main_tank_price_unit": "/gal",
            },
        )
        prefs = services.preferences.snapshot()
        assert prefs.main_tank_level_unit == "gal"
        assert prefs.main_tank_price_unit == "/gal"
        assert prefs.main_tank_price == 4.1

    def test_omitted_units_and_price_reuse_previous_edit(
        self, client: TestClient
    ) -> None:
        client.post(
            "/levels",
            json={
                "main_tank_level": 10.0,
                "main_tank_level_unit": "gal",
                "main_tank_price": 3.785,
                "main_tank_price_unit": "/gal",
            },
        )
        client.post("/levels", json={"main_tank_level": 20.0})

        body = client.get("/levels").json()
        assert body["mainTankLevelLiters"] == 20.0 * LITERS_PER_GALLON
        assert body["pricePerLiter"] == pytest.approx(1.0)

    def test_explicit_units_override_saved_ones(
        self, client: TestClient, services: Services
    ) -> None:
        services.preferences.update(main_tank_level_unit="gal")
        client.post("/levels", json={"main_tank_level": 20.0, "main_tank_level_unit": "L"})
        assert client.get("/levels").json()["mainTankLevelLiters"] == 20.0

    def test_negative_level_rejected(self, client: TestClient) -> None:
        resp = client.post("/levels", json={"main_tank_level": -1.0})
        assert resp.status_code == 422

    def test_new_reading_flag_flow(self, client: TestClient) -> None:
        assert client.get("/has_new_reading").json() == {"status": 0}

        client.post("/levels", json={"main_tank_level": 30.0})
        assert client.get("/has_new_reading").json() == {"status": 1}
        # Reading the flag does not clear it.
        assert client.get("/has_new_reading").json() == {"status": 1}

        resp = client.get("/consume_new_reading")
        assert resp.status_code == 200
        assert resp.content == b""
        assert client.get("/has_new_reading").json() == {"status": 0}

        # Consuming again is harmless.
        assert client.get("/consume_new_reading").status_code == 200
        assert client.get("/has_new_reading").json() == {"status": 0}


# ---------------------------------------------------------------------------
# Settings endpoints
# ---------------------------------------------------------------------------

class TestSettings:
    def test_tank_capacity_is_persisted(
        self, client: TestClient, services: Services
    ) -> None:
        assert services.tank_capacity_liters() == 50.0
        resp = client.put("/tank_capacity", json={"tank_capacity_liters": 65.0})
        assert resp.status_code == 200
        assert resp.json() == {"tank_capacity_liters": 65.0}
        assert services.tank_capacity_liters() == 65.0
        assert services.preferences.path.exists()

    def test_tank_capacity_must_be_positive(self, client: TestClient) -> None:
        resp = client.put("/tank_capacity", json={"tank_capacity_liters": 0})
        assert resp.status_code == 422

    def test_miniserver_url_is_saved(
        self, client: TestClient, services: Services
    ) -> None:
        url = "http://dns.loxonecloud.com/504F94A11111/jdev/sps/io/spare-tank/state"
        resp = client.put("/miniserver_url", json={"url": url})
        assert resp.status_code == 200
        assert resp.json() == {"miniserver_url": url}
        assert services.miniserver_url() == url
        assert client.get("/status").json()["miniserver_url"] == url

    def test_miniserver_url_must_be_http(self, client: TestClient) -> None:
        resp = client.put("/miniserver_url", json={"url": "not a url"})
        assert resp.status_code == 422

    def test_location_update(
        self, client: TestClient, services: Services
    ) -> None:
        resp = client.put(
            "/location",
            json={"latitude": 47.37, "longitude": 8.54, "elevation": 408.0},
        )
        assert resp.status_code == 204
        location = services.process_state.location
        assert location.latitude == 47.37
        assert location.elevation == 408.0


# ---------------------------------------------------------------------------
# /status and /health
# ---------------------------------------------------------------------------

class TestStatus:
    def test_no_samples_shows_unavailable(self, client: TestClient) -> None:
        body = client.get("/status").json()
        assert body["readings"]["rpm"] == UNAVAILABLE
        assert body["readings"]["fuel_in_tank"] == UNAVAILABLE
        assert body["spare_tank_liters"] is None
        assert body["tank_capacity_liters"] == 50.0

    def test_latest_sample_and_relay_value(
        self, client: TestClient, services: Services
    ) -> None:
        services.store.append(
            _sample(timedelta(seconds=1), engine_rpm=780, coolant_temp_c=88)
        )
        services.process_state.set_spare_tank_level(31.0)
        body = client.get("/status").json()
        assert body["readings"]["rpm"] == "780 rpm"
        assert body["readings"]["water_temp"] == "88 °C"
        assert body["readings"]["engine_load"] == UNAVAILABLE
        assert body["spare_tank_liters"] == 31.0
        assert body["spare_tank_received_at"] is not None

    def test_health(self, client: TestClient, services: Services) -> None:
        services.store.append(_sample(timedelta(seconds=1), engine_rpm=780))
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["sample_count"] == 1
        assert "version" in body
