# =============================================================================
# tests/integration/test_api.py
# Integration Tests for the FastAPI routes
# =============================================================================

import pytest

pytestmark = pytest.mark.integration

SECTOR_ID = 10


@pytest.fixture
def client(db_path, fake_source, equipment_row, work_order_row, monkeypatch):
    """TestClient with the MEL service bound to the fake source and a temp DB"""
    from fastapi.testclient import TestClient

    from melguard.config import settings
    from melguard.main import app
    from melguard.services.alert_store import AlertStore
    from melguard.services.mel_service import MelService, get_mel_service
    from melguard.services.rule_store import MelRuleStore
    from melguard.services.snapshot_cache import SnapshotCache

    monkeypatch.setattr(settings, "RECONCILE_INTERVAL_S", 0)

    fake_source.equipment_rows.extend([
        equipment_row(1, "Ventilador Pulmonar", sector_id=SECTOR_ID, model="A"),
        equipment_row(2, "Ventilador Pulmonar", sector_id=SECTOR_ID, model="B"),
        equipment_row(3, "Monitor Multiparâmetro", sector_id=SECTOR_ID),
    ])
    fake_source.work_order_rows.append(work_order_row(1, equipment_id=2))

    service = MelService(source=fake_source, rule_store=MelRuleStore(db_path),
                         alert_store=AlertStore(db_path), cache=SnapshotCache(ttl_seconds=0))
    app.dependency_overrides[get_mel_service] = lambda: service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _configure(client, minimum=2):
    return client.post(f"/api/mel/sector/{SECTOR_ID}", json={
        "sector_name": "UTI Adulto",
        "items": [{
            "equipment_group_key": "ventilador",
            "equipment_group_name": "Ventilador Pulmonar",
            "minimum_quantity": minimum,
        }],
    }, headers={"X-User": "enf.chefe"})


class TestHealthAndGroups:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_default_groups(self, client):
        data = client.get("/api/mel/equipment-groups").json()
        assert len(data["groups"]) == 13
        assert data["groups"][0]["key"] == "monitor"

    def test_sector_equipments(self, client):
        data = client.get(f"/api/mel/sector/{SECTOR_ID}/equipments").json()

        groups = {g["group_key"]: g for g in data["groups"]}
        assert (groups["ventilador"]["total"], groups["ventilador"]["available"]) == (2, 1)
        assert len(groups["ventilador"]["equipment"]) == 2


class TestRuleRoutes:

    def test_configure_sector_creates_alert(self, client):
        response = _configure(client)

        assert response.status_code == 200
        item = response.json()["items"][0]
        assert item["created_by"] == "enf.chefe"

        alerts = client.get("/api/mel/alerts").json()
        assert alerts["total"] == 1
        assert alerts["alerts"][0]["current_available"] == 1
        assert client.get("/api/mel/alerts/count").json()["count"] == 1

    def test_sector_mel(self, client):
        _configure(client)

        items = client.get(f"/api/mel/sector/{SECTOR_ID}").json()["items"]

        assert len(items) == 1
        assert items[0]["em_alerta"] is True
        assert "equipment" not in items[0]

    def test_unknown_group_is_400(self, client):
        response = client.post(f"/api/mel/sector/{SECTOR_ID}", json={"items": [{
            "equipment_group_key": "tomografo",
            "equipment_group_name": "Tomógrafo",
            "minimum_quantity": 1,
        }]})

        assert response.status_code == 400
        assert response.json()["code"] == "VAL_001"

    def test_negative_minimum_rejected_by_request_model(self, client):
        response = client.post(f"/api/mel/sector/{SECTOR_ID}", json={"items": [{
            "equipment_group_key": "ventilador",
            "equipment_group_name": "Ventilador",
            "minimum_quantity": -1,
        }]})

        assert response.status_code == 422

    def test_rule_get_patch_delete(self, client):
        rule_id = _configure(client).json()["items"][0]["id"]

        assert client.get(f"/api/mel/rule/{rule_id}").json()["minimum_quantity"] == 2

        patched = client.patch(f"/api/mel/rule/{rule_id}", json={"minimum_quantity": 1})
        assert patched.status_code == 200
        assert patched.json()["rule"]["minimum_quantity"] == 1
        assert client.get("/api/mel/alerts/count").json()["count"] == 0

        assert client.delete(f"/api/mel/rule/{rule_id}").status_code == 200
        assert client.get(f"/api/mel/rule/{rule_id}").status_code == 404

    def test_missing_rule_is_404(self, client):
        response = client.get("/api/mel/rule/999")

        assert response.status_code == 404
        assert response.json()["code"] == "NF_001"

    def test_delete_sector_and_group(self, client):
        _configure(client)

        assert client.delete(
            f"/api/mel/sector/{SECTOR_ID}/equipment-group/ventilador").status_code == 200
        assert client.delete(f"/api/mel/sector/{SECTOR_ID}").status_code == 404

    def test_resolved_alerts_listed_on_request(self, client):
        rule_id = _configure(client).json()["items"][0]["id"]
        client.delete(f"/api/mel/rule/{rule_id}")

        assert client.get("/api/mel/alerts").json()["total"] == 0
        history = client.get("/api/mel/alerts", params={"only_active": False}).json()
        assert history["alerts"][0]["status"] == "resolved"


class TestRecalculateAndSummary:

    def test_recalculate_returns_counters(self, client):
        _configure(client)

        data = client.post("/api/mel/recalculate").json()

        assert data["success"] is True
        assert data["rules_evaluated"] == 1
        assert data["alerts_created"] == 0

    def test_recalculate_source_outage_is_503(self, client, fake_source):
        _configure(client)
        fake_source.fail_equipment = True

        response = client.post("/api/mel/recalculate")

        assert response.status_code == 503
        body = response.json()
        assert body["phase"] == "equipment"
        assert body["alerts_unchanged"] is True
        assert client.get("/api/mel/alerts/count").json()["count"] == 1

    def test_summary(self, client):
        _configure(client)

        data = client.get("/api/mel/summary").json()

        assert data["total_active_alerts"] == 1
        assert data["problems"][0]["shortfall"] == 1
