# fixtures compartilhadas: o mesmo cenário montado em memória e no sqlite
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from src.domain.entities.counterparty import Counterparty
from src.domain.entities.tank import Tank
from src.domain.enums import CounterpartyKind, FuelType
from src.domain.use_cases.consumption_forecaster import ConsumptionForecaster
from src.domain.use_cases.ledger_query import LedgerQuery
from src.domain.use_cases.tank_ledger import TankLedger
from src.infrastructure.database.migrations import run_migrations
from src.infrastructure.database.sqlite_ledger_repository import (
    SqliteCounterpartyRepository,
    SqliteLedgerRepository,
)
from src.infrastructure.memory.in_memory_repositories import (
    InMemoryCounterpartyRepository,
    InMemoryLedgerRepository,
)

TENANT = "sub-a"
OTHER_TENANT = "sub-b"
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@dataclass
class Env:
    repo: object
    counterparties: object
    ledger: TankLedger
    query: LedgerQuery
    forecaster: ConsumptionForecaster
    tank: Tank


def make_repos(kind: str, tmp_path):
    if kind == "memory":
        return InMemoryLedgerRepository(), InMemoryCounterpartyRepository()
    db = tmp_path / "ledger.db"
    run_migrations(db)
    return SqliteLedgerRepository(db), SqliteCounterpartyRepository(db)


def build_env(kind: str, tmp_path, max_attempts: int = 5) -> Env:
    repo, cps = make_repos(kind, tmp_path)
    ledger = TankLedger(repo, cps, max_attempts=max_attempts, sleep=lambda s: None)
    tank = ledger.provision(Tank(
        id="tank-1", tenant_id=TENANT, fuel_type=FuelType.DIESEL,
        capacity=1000.0, current_volume=200.0, low_threshold=150.0, location="Pátio A",
    ))
    cps.add(Counterparty(id="veh-1", tenant_id=TENANT, kind=CounterpartyKind.VEHICLE, name="Caminhão 1"))
    cps.add(Counterparty(id="veh-2", tenant_id=TENANT, kind=CounterpartyKind.VEHICLE, name="Caminhão 2"))
    cps.add(Counterparty(id="ven-1", tenant_id=TENANT, kind=CounterpartyKind.VENDOR, name="Distribuidora"))
    cps.add(Counterparty(id="veh-x", tenant_id=OTHER_TENANT, kind=CounterpartyKind.VEHICLE, name="Outro"))
    return Env(
        repo=repo,
        counterparties=cps,
        ledger=ledger,
        query=LedgerQuery(repo, cps),
        forecaster=ConsumptionForecaster(repo, cps),
        tank=tank,
    )


@pytest.fixture(params=["memory", "sqlite"])
def env(request, tmp_path) -> Env:
    return build_env(request.param, tmp_path)


@pytest.fixture
def mem_env(tmp_path) -> Env:
    return build_env("memory", tmp_path)
