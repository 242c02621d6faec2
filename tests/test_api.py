import uuid
from datetime import date, timedelta

import pytest

API = "/api/v1"


def mo_payload(**overrides):
    today = date.today()
    payload = {
        "order_number": "MO-API-0001",
        "panel_type": "36",
        "quantity": 1,
        "start_date": today.isoformat(),
        "end_date": (today + timedelta(days=7)).isoformat(),
        "created_by": "supervisor-1",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
async def mo(client):
    response = await client.post(f"{API}/manufacturing-orders", json=mo_payload())
    assert response.status_code == 201
    return response.json()


@pytest.fixture
async def panel(client, mo):
    response = await client.post(
        f"{API}/panels",
        json={"mo_id": mo["id"], "registered_by": "op-1", "barcode": "CRS25WT3600001"},
    )
    assert response.status_code == 201
    return response.json()


async def inspect(client, panel_id, station, result="PASS", notes=None):
    return await client.post(
        f"{API}/inspections",
        json={
            "panel_id": panel_id,
            "station_number": station,
            "inspector_id": "insp-1",
            "result": result,
            "notes": notes,
        },
    )


class TestBarcodes:
    async def test_decode(self, client):
        response = await client.post(f"{API}/barcodes/decode", json={"barcode": "CRS25WT3600123"})

        assert response.status_code == 200
        body = response.json()
        assert body["decoded"]["panel_type"] == "36"
        assert body["decoded"]["sequence_number"] == 123
        assert body["line_assignment"]["line_number"] == 1
        assert body["line_assignment"]["station_range"] == [1, 2, 3, 4]

    async def test_malformed_barcode_is_400(self, client):
        response = await client.post(f"{API}/barcodes/decode", json={"barcode": "CRS25WT36"})

        assert response.status_code == 400
        body = response.json()
        assert body["kind"] == "FORMAT_ERROR"
        assert body["code"] == "INVALID_LENGTH"

    async def test_generate(self, client):
        response = await client.post(
            f"{API}/barcodes/generate",
            json={"year": 2025, "panel_type": "144", "start_sequence": 10, "count": 3},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["count"] == 3
        assert body["first"] == "CRS25WT14400010"
        assert body["last"] == "CRS25WT14400012"

    async def test_format(self, client):
        response = await client.get(f"{API}/barcodes/format")
        assert response.status_code == 200
        assert response.json()["format"] == "CRSYYFBPP#####"


class TestManufacturingOrders:
    async def test_create_get_and_list(self, client, mo):
        response = await client.get(f"{API}/manufacturing-orders/{mo['id']}")
        assert response.status_code == 200
        assert response.json()["status"] == "PENDING"
        assert response.json()["panels_remaining"] == 1

        response = await client.get(f"{API}/manufacturing-orders", params={"status": "PENDING"})
        assert response.json()["total"] == 1

    async def test_invalid_order_is_422(self, client):
        response = await client.post(f"{API}/manufacturing-orders", json=mo_payload(panel_type="50"))

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_PANEL_TYPE"

    async def test_duplicate_is_409(self, client, mo):
        response = await client.post(f"{API}/manufacturing-orders", json=mo_payload())
        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_ORDER_NUMBER"

    async def test_unknown_order_is_404(self, client):
        response = await client.get(f"{API}/manufacturing-orders/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["kind"] == "NOT_FOUND"

    async def test_completed_cannot_be_requested(self, client, mo):
        response = await client.post(
            f"{API}/manufacturing-orders/{mo['id']}/status",
            json={"status": "COMPLETED", "changed_by": "sup-1"},
        )
        assert response.status_code == 409
        assert response.json()["code"] == "STATUS_NOT_SETTABLE"

    async def test_cancelled_order_cannot_resume(self, client, mo):
        url = f"{API}/manufacturing-orders/{mo['id']}/status"
        response = await client.post(url, json={"status": "CANCELLED", "changed_by": "sup-1"})
        assert response.status_code == 200

        response = await client.post(url, json={"status": "IN_PROGRESS", "changed_by": "sup-1"})
        assert response.status_code == 409
        body = response.json()
        assert body["kind"] == "STATE_CONFLICT_ERROR"
        assert body["code"] == "INVALID_STATUS_TRANSITION"
        assert "MO-API-0001" in body["message"]

    async def test_progress(self, client, mo, panel):
        response = await client.get(f"{API}/manufacturing-orders/{mo['id']}/progress", params={"fresh": True})

        assert response.status_code == 200
        body = response.json()
        assert body["panels_registered"] == 1
        assert body["status"] == "IN_PROGRESS"
        assert len(body["stations"]) == 4

    async def test_closure_readiness(self, client, mo, panel):
        response = await client.get(f"{API}/manufacturing-orders/{mo['id']}/closure/readiness")

        assert response.status_code == 200
        body = response.json()
        assert body["ready"] is False
        assert {b["name"] for b in body["blockers"]} == {"panel_completion", "open_panels"}
        assert body["recommendations"][-1]["type"] == "not_ready"

    async def test_closure_history_of_unknown_order_is_404(self, client):
        response = await client.get(f"{API}/manufacturing-orders/{uuid.uuid4()}/closure/history")
        assert response.status_code == 404


class TestPanelFlow:
    async def test_full_line_closes_order(self, client, mo, panel):
        response = await client.get(f"{API}/panels/by-barcode/CRS25WT3600001")
        assert response.json()["id"] == panel["id"]

        for station in (1, 2, 3):
            assert (await inspect(client, panel["id"], station)).status_code == 201

        missing = await inspect(client, panel["id"], 4)
        assert missing.status_code == 422
        assert missing.json()["kind"] == "DATA_INCOMPLETE_ERROR"

        response = await client.post(
            f"{API}/panels/{panel['id']}/electrical-data",
            json={"wattage_pmax": 203.5, "vmp": 33.4, "imp": 6.09, "recorded_by": "tester-1"},
        )
        assert response.status_code == 200

        final = await inspect(client, panel["id"], 4)
        assert final.status_code == 201
        assert final.json()["panel"]["status"] == "COMPLETED"
        assert final.json()["mo_closed"] is True

        order = (await client.get(f"{API}/manufacturing-orders/{mo['id']}")).json()
        assert order["status"] == "COMPLETED"

        history = (await client.get(f"{API}/panels/{panel['id']}/inspections")).json()
        assert history["total"] == 4

        closures = (await client.get(f"{API}/manufacturing-orders/{mo['id']}/closure/history")).json()
        assert closures["total"] == 1
        assert closures["items"][0]["trigger"] == "INSPECTION"

    async def test_out_of_sequence_is_409(self, client, panel):
        response = await inspect(client, panel["id"], 3)

        assert response.status_code == 409
        body = response.json()
        assert body["kind"] == "SEQUENCE_ERROR"
        assert body["code"] == "STATION_SEQUENCE_VIOLATION"

    async def test_fail_without_notes_is_422(self, client, panel):
        response = await inspect(client, panel["id"], 1, result="FAIL")
        assert response.status_code == 422
        assert response.json()["code"] == "NOTES_REQUIRED"

    async def test_fail_then_rework(self, client, panel):
        assert (await inspect(client, panel["id"], 1, result="FAIL", notes="cell crack")).status_code == 201

        response = await client.post(
            f"{API}/panels/{panel['id']}/rework",
            json={"reason": "cell replaced", "routed_by": "sup-1"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "REWORK"

    async def test_panel_type_mismatch(self, client, mo):
        response = await client.post(
            f"{API}/panels",
            json={"mo_id": mo["id"], "registered_by": "op-1", "barcode": "CRS25WT7200001"},
        )
        assert response.status_code == 422
        assert response.json()["code"] == "PANEL_TYPE_MISMATCH"

    async def test_override(self, client, panel):
        response = await client.post(
            f"{API}/panels/{panel['id']}/override",
            json={
                "overrides": {"frame_color": "black"},
                "audit": {"reason": "Frame swapped at framing", "user_id": "sup-1"},
            },
        )
        assert response.status_code == 200
        assert response.json()["frame_color"] == "black"
        assert response.json()["manual_override"] is True


class TestStationCriteria:
    async def test_line_2_checklist(self, client):
        response = await client.get(f"{API}/inspections/stations/5/criteria")

        assert response.status_code == 200
        body = response.json()
        assert body["line_name"] == "LINE_2"
        assert body["station_name"] == "Assembly & EL"
        assert "large_panel_handling" in {c["id"] for c in body["pass_criteria"]}
        assert all(c["notes_required"] for c in body["fail_criteria"])

    async def test_unknown_station_is_404(self, client):
        response = await client.get(f"{API}/inspections/stations/9/criteria")
        assert response.status_code == 404
        assert response.json()["code"] == "STATION_NOT_FOUND"

    async def test_unknown_criterion_is_422(self, client, panel):
        response = await client.post(
            f"{API}/inspections",
            json={
                "panel_id": panel["id"],
                "station_number": 1,
                "inspector_id": "insp-1",
                "result": "PASS",
                "criteria": ["mirror_examination_passed"],
            },
        )
        assert response.status_code == 422
        assert response.json()["code"] == "UNKNOWN_CRITERION"


class TestAlerts:
    async def test_evaluate_and_resolve(self, client, mo, panel):
        response = await client.post(f"{API}/alerts/evaluate/{mo['id']}")
        assert response.status_code == 200
        raised = response.json()["raised"]
        assert {a["alert_type"] for a in raised} == {"panels_remaining", "low_progress"}

        alert_id = raised[0]["id"]
        response = await client.post(f"{API}/alerts/{alert_id}/resolve", json={"user_id": "sup-1"})
        assert response.status_code == 200
        assert response.json()["status"] == "resolved"

        again = await client.post(f"{API}/alerts/{alert_id}/resolve", json={"user_id": "sup-1"})
        assert again.status_code == 409
        assert again.json()["code"] == "ALERT_ALREADY_RESOLVED"

        listed = (await client.get(f"{API}/alerts", params={"mo_id": mo["id"], "status": "active"})).json()
        assert listed["total"] == 1


async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert "version" in response.json()


async def test_health_hides_database_errors(client, monkeypatch):
    from paneltrack import main

    def unreachable():
        raise OSError("could not connect to server at db.internal:5432 as user paneltrack")

    monkeypatch.setattr(main, "async_session_factory", unreachable)
    response = await client.get("/health")

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "unhealthy"
    assert body["checks"]["database"] == "unavailable"
    assert "db.internal" not in response.text
