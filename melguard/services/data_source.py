"""
MEL Guard - Effort Data Sources
Version: 1.1.0

Changelog:
v1.1.0 (2026-10-12): Bounded timeouts; failures surface as TransientExternalError
v1.0.0 (2026-09-28): Effort API client and fixture-backed mock source

Equipment comes from /api/pbi/v1/equipamentos; work orders from the analytic
listing /api/pbi/v1/listagem_analitica_das_os, the only listing that carries
Tag and EquipamentoId. Rows are normalized here, at the ingestion edge.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx

from melguard.config import settings
from melguard.errors import TransientExternalError
from melguard.models.equipment import EquipmentRecord, WorkOrderRecord

logger = logging.getLogger(__name__)

EQUIPMENT_ENDPOINT = "/api/pbi/v1/equipamentos"
WORK_ORDER_ENDPOINT = "/api/pbi/v1/listagem_analitica_das_os"


def unwrap_rows(payload: Any) -> List[Dict[str, Any]]:
    """Effort answers with a bare list, {"Itens": [...]} or {"data": [...]}"""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("Itens", "itens", "data", "items"):
            rows = payload.get(key)
            if isinstance(rows, list):
                return rows
    raise TransientExternalError(
        f"Unexpected payload shape: {type(payload).__name__}", source="effort")


def normalize_equipment(rows: List[Dict[str, Any]]) -> Tuple[EquipmentRecord, ...]:
    records = []
    for raw in rows:
        try:
            records.append(EquipmentRecord.from_source(raw))
        except ValueError as e:
            logger.warning(f"Skipping equipment row: {e}")
    return tuple(records)


def normalize_work_orders(rows: List[Dict[str, Any]]) -> Tuple[WorkOrderRecord, ...]:
    records = []
    for raw in rows:
        try:
            records.append(WorkOrderRecord.from_source(raw))
        except ValueError as e:
            logger.warning(f"Skipping work order row: {e}")
    return tuple(records)


class DataSource:
    """Supplies raw equipment and work order rows"""

    name = "source"

    async def fetch_equipment_rows(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def fetch_work_order_rows(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def fetch_equipment(self, timeout: Optional[float] = None) -> Tuple[EquipmentRecord, ...]:
        rows = await self._bounded(self.fetch_equipment_rows(), "equipment", timeout)
        return normalize_equipment(rows)

    async def fetch_work_orders(self, timeout: Optional[float] = None) -> Tuple[WorkOrderRecord, ...]:
        rows = await self._bounded(self.fetch_work_order_rows(), "work_orders", timeout)
        return normalize_work_orders(rows)

    async def _bounded(self, coro, what: str, timeout: Optional[float]):
        timeout = settings.SOURCE_TIMEOUT_S if timeout is None else timeout
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            raise TransientExternalError(
                f"Timed out fetching {what} after {timeout}s", source=f"{self.name}:{what}")
        except TransientExternalError:
            raise
        except (httpx.HTTPError, OSError, ValueError) as e:
            raise TransientExternalError(
                f"Failed fetching {what}: {e}", source=f"{self.name}:{what}")


class EffortDataSource(DataSource):
    """Effort CMMS API over httpx"""

    name = "effort"

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url or settings.EFFORT_BASE_URL
        self.api_key = api_key if api_key is not None else settings.EFFORT_API_KEY
        self.timeout = timeout or settings.SOURCE_TIMEOUT_S
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"X-API-KEY": self.api_key},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _get(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self._client() as client:
            response = await client.get(path, params=params)
            response.raise_for_status()
            return unwrap_rows(response.json())

    async def fetch_equipment_rows(self):
        rows = await self._get(EQUIPMENT_ENDPOINT, {
            "apenasAtivos": "true",
            "incluirComponentes": "false",
            "incluirCustoSubstituicao": "false",
        })
        logger.info(f"Effort: {len(rows)} equipment rows")
        return rows

    async def fetch_work_order_rows(self):
        rows = await self._get(WORK_ORDER_ENDPOINT, {
            "tipoManutencao": "Todos",
            "periodo": "AnoCorrente",
            "pagina": 0,
            "qtdPorPagina": 50000,
        })
        logger.info(f"Effort: {len(rows)} work order rows")
        return rows


class MockDataSource(DataSource):
    """JSON fixtures in MOCK_DATA_DIR (equipamentos.json, os_analitica.json)"""

    name = "mock"

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = Path(data_dir or settings.MOCK_DATA_DIR)

    def _read(self, filename: str):
        with open(self.data_dir / filename, encoding="utf-8") as f:
            return unwrap_rows(json.load(f))

    async def fetch_equipment_rows(self):
        return self._read("equipamentos.json")

    async def fetch_work_order_rows(self):
        return self._read("os_analitica.json")


@dataclass(frozen=True)
class Snapshot:
    """Read-only equipment + work order data for one pass"""
    equipment: Tuple[EquipmentRecord, ...]
    work_orders: Tuple[WorkOrderRecord, ...]
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def get_data_source() -> DataSource:
    """Configured source: fixtures when USE_MOCK, Effort API otherwise"""
    if settings.USE_MOCK:
        return MockDataSource()
    return EffortDataSource()
