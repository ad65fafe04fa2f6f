# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from typing import Any, Dict, List, Optional

from melguard.errors import TransientExternalError
from melguard.services.data_source import DataSource


# =============================================================================
# RAW EFFORT ROWS
# =============================================================================

def _equipment_row(equipment_id, name, sector_id: Optional[int] = 1,
                   sector_name: str = "UTI Adulto", tag: Optional[str] = None,
                   model: str = "", manufacturer: str = "",
                   status: str = "Ativo") -> Dict[str, Any]:
    return {
        "Id": equipment_id,
        "Tag": tag if tag is not None else f"TAG-{equipment_id}",
        "Equipamento": name,
        "Modelo": model,
        "Fabricante": manufacturer,
        "SetorId": sector_id,
        "Setor": sector_name,
        "Status": status,
    }


def _work_order_row(serial, equipment_id=None, tag: Optional[str] = None,
                    status: str = "Aberta", maintenance_type: str = "Corretiva",
                    name: str = "", model: str = "", manufacturer: str = "") -> Dict[str, Any]:
    return {
        "CodigoSerialOS": serial,
        "OS": f"OS-{serial}",
        "EquipamentoId": equipment_id,
        "Tag": tag,
        "Equipamento": name,
        "Modelo": model,
        "Fabricante": manufacturer,
        "SituacaoDaOS": status,
        "TipoDeManutencao": maintenance_type,
        "Abertura": "2026-10-10T08:00:00",
        "Fechamento": None,
    }


@pytest.fixture
def equipment_row():
    """Factory for Effort equipamentos rows"""
    return _equipment_row


@pytest.fixture
def work_order_row():
    """Factory for Effort listagem_analitica_das_os rows"""
    return _work_order_row


# =============================================================================
# FAKE SOURCE
# =============================================================================

class FakeDataSource(DataSource):
    """In-memory source; flip fail_* to simulate an Effort outage"""

    name = "fake"

    def __init__(self):
        self.equipment_rows: List[Dict[str, Any]] = []
        self.work_order_rows: List[Dict[str, Any]] = []
        self.fail_equipment = False
        self.fail_work_orders = False
        self.equipment_calls = 0
        self.work_order_calls = 0

    async def fetch_equipment_rows(self):
        self.equipment_calls += 1
        if self.fail_equipment:
            raise TransientExternalError("equipment endpoint down", source="fake:equipment")
        return list(self.equipment_rows)

    async def fetch_work_order_rows(self):
        self.work_order_calls += 1
        if self.fail_work_orders:
            raise TransientExternalError("work order endpoint down", source="fake:work_orders")
        return list(self.work_order_rows)


@pytest.fixture
def fake_source():
    return FakeDataSource()


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Temporary SQLite file; default stores resolve to it through MELGUARD_DB"""
    path = str(tmp_path / "melguard_test.db")
    monkeypatch.setenv("MELGUARD_DB", path)
    return path


@pytest.fixture
async def initialized_db(db_path):
    from melguard.models import init_db
    await init_db(db_path)
    return db_path


@pytest.fixture
def rule_store(initialized_db):
    from melguard.services.rule_store import MelRuleStore
    return MelRuleStore(initialized_db)


@pytest.fixture
def alert_store(initialized_db):
    from melguard.services.alert_store import AlertStore
    return AlertStore(initialized_db)


@pytest.fixture
def reconciler(fake_source, rule_store, alert_store):
    from melguard.services.alert_reconciler import AlertReconciler
    return AlertReconciler(source=fake_source, rule_store=rule_store, alert_store=alert_store)


@pytest.fixture
def mel_service(fake_source, rule_store, alert_store, reconciler):
    from melguard.services.mel_service import MelService
    from melguard.services.snapshot_cache import SnapshotCache
    return MelService(source=fake_source, rule_store=rule_store, alert_store=alert_store,
                      cache=SnapshotCache(ttl_seconds=0), reconciler=reconciler)
