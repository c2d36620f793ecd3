# Simulador de movimentação de combustível (abastecimentos concorrentes + compras)
# Execução:
#   python -m src.infrastructure.simulation.fuel_activity_simulator --tanks 2 --vehicles 8 --events 200 --workers 8
#   python -m src.infrastructure.simulation.fuel_activity_simulator --memory   (sem banco)
# Mantém: generate_intent() e run_burst() para os testes usarem

from __future__ import annotations

import argparse
import logging
import random
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from config.database import DATABASE_PATH
from src.domain.entities.counterparty import Counterparty
from src.domain.entities.tank import Tank
from src.domain.entities.transaction import Transaction
from src.domain.enums import CounterpartyKind, FuelType, TransactionType
from src.domain.errors import LedgerError
from src.domain.use_cases.consumption_forecaster import ConsumptionForecaster
from src.domain.use_cases.tank_ledger import TankLedger

log = logging.getLogger("fuel_ledger.simulation")

# =========================
# Parâmetros de simulação
# =========================
PURCHASE_PROBABILITY = 0.08          # fração dos eventos que são compras
ADJUSTMENT_PROBABILITY = 0.02        # fração dos eventos que são ajustes manuais
DISPENSE_RANGE = (20.0, 120.0)       # litros por abastecimento de veículo
PURCHASE_FILL_RANGE = (0.3, 0.9)     # compra como fração da capacidade
ADJUSTMENT_RANGE = (-15.0, 15.0)
TANK_CAPACITY = 5000.0
LOW_THRESHOLD_RATIO = 0.15


@dataclass(frozen=True)
class Intent:
    """Pedido de lançamento gerado pelo simulador (ainda não aplicado)."""
    tank_id: str
    type: TransactionType
    quantity: float
    occurred_at: datetime
    counterparty_id: Optional[str] = None
    unit_cost: Optional[float] = None
    remarks: Optional[str] = None


@dataclass
class Fleet:
    """Tanques, veículos e fornecedores semeados para um tenant."""
    tenant_id: str
    tanks: List[Tank] = field(default_factory=list)
    vehicles: List[str] = field(default_factory=list)
    vendors: List[str] = field(default_factory=list)


@dataclass
class BurstResult:
    """Resumo de uma rajada: lançamentos aplicados e erros por tipo."""
    applied: List[Transaction] = field(default_factory=list)
    errors: Counter = field(default_factory=Counter)


def seed_fleet(ledger: TankLedger, counterparties, tenant_id: str,
               n_tanks: int = 2, n_vehicles: int = 8, n_vendors: int = 2) -> Fleet:
    """Provisiona tanques (meio cheios) e cadastra veículos/fornecedores do tenant."""
    fleet = Fleet(tenant_id=tenant_id)
    fuel_types = list(FuelType)
    for i in range(1, n_tanks + 1):
        tank = Tank(
            id=f"{tenant_id}-tank-{i}",
            tenant_id=tenant_id,
            fuel_type=fuel_types[(i - 1) % len(fuel_types)],
            capacity=TANK_CAPACITY,
            current_volume=TANK_CAPACITY / 2,
            low_threshold=TANK_CAPACITY * LOW_THRESHOLD_RATIO,
            location=f"Pátio {i}",
        )
        fleet.tanks.append(ledger.provision(tank))
    for i in range(1, n_vehicles + 1):
        vid = f"{tenant_id}-vehicle-{i}"
        counterparties.add(Counterparty(id=vid, tenant_id=tenant_id, kind=CounterpartyKind.VEHICLE, name=f"Veículo {i}"))
        fleet.vehicles.append(vid)
    for i in range(1, n_vendors + 1):
        vid = f"{tenant_id}-vendor-{i}"
        counterparties.add(Counterparty(id=vid, tenant_id=tenant_id, kind=CounterpartyKind.VENDOR, name=f"Fornecedor {i}"))
        fleet.vendors.append(vid)
    return fleet


def generate_intent(fleet: Fleet, now: datetime, rng: random.Random = random) -> Intent:
    """
    Sorteia um evento realista:
    - maioria de abastecimentos (saídas) por veículos
    - compras ocasionais de um fornecedor, proporcionais à capacidade
    - raros ajustes manuais (aferição de régua)
    O evento pode ser rejeitado pelo ledger; isso faz parte da simulação.
    """
    tank = rng.choice(fleet.tanks)
    occurred = now - timedelta(minutes=rng.uniform(0, 60 * 24))
    roll = rng.random()
    if roll < ADJUSTMENT_PROBABILITY:
        qty = round(rng.uniform(*ADJUSTMENT_RANGE), 2) or 1.0
        return Intent(tank.id, TransactionType.ADJUSTMENT, qty, occurred, remarks="aferição de régua")
    if roll < ADJUSTMENT_PROBABILITY + PURCHASE_PROBABILITY:
        qty = round(tank.capacity * rng.uniform(*PURCHASE_FILL_RANGE), 2)
        return Intent(tank.id, TransactionType.PURCHASE, qty, occurred,
                      counterparty_id=rng.choice(fleet.vendors), unit_cost=round(rng.uniform(5.5, 6.5), 2))
    qty = round(rng.uniform(*DISPENSE_RANGE), 2)
    return Intent(tank.id, TransactionType.DISPENSE, qty, occurred, counterparty_id=rng.choice(fleet.vehicles))


def run_burst(ledger: TankLedger, tenant_id: str, intents: Sequence[Intent], workers: int = 8) -> BurstResult:
    """
    Aplica os pedidos em paralelo (um pool de threads simula requisições web
    concorrentes). Erros de domínio são contabilizados por tipo, não interrompem a rajada.
    """
    result = BurstResult()

    def _apply(intent: Intent):
        try:
            return ledger.apply(
                tenant_id, intent.tank_id, intent.type, intent.quantity,
                occurred_at=intent.occurred_at,
                counterparty_id=intent.counterparty_id,
                unit_cost=intent.unit_cost,
                remarks=intent.remarks,
            )
        except LedgerError as e:
            return e

    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        for outcome in pool.map(_apply, intents):
            if isinstance(outcome, Transaction):
                result.applied.append(outcome)
            else:
                result.errors[type(outcome).__name__] += 1
    return result


# ===== Runner CLI =====
def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Simulador de movimentação de tanques de combustível")
    parser.add_argument("--tenant", default="demo", help="Tenant (subsidiária) a semear")
    parser.add_argument("--tanks", type=int, default=2, help="Quantidade de tanques (default: 2)")
    parser.add_argument("--vehicles", type=int, default=8, help="Quantidade de veículos (default: 8)")
    parser.add_argument("--events", type=int, default=200, help="Eventos na rajada (default: 200)")
    parser.add_argument("--workers", type=int, default=8, help="Threads concorrentes (default: 8)")
    parser.add_argument("--seed", type=int, default=None, help="Semente do gerador aleatório")
    parser.add_argument("--memory", action="store_true", help="Usar repositórios em memória em vez do sqlite")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    rng = random.Random(args.seed)

    if args.memory:
        from src.infrastructure.memory.in_memory_repositories import (
            InMemoryCounterpartyRepository, InMemoryLedgerRepository,
        )
        ledger_repo, cp_repo = InMemoryLedgerRepository(), InMemoryCounterpartyRepository()
        print("Repositórios: memória")
    else:
        from src.infrastructure.database.migrations import run_migrations
        from src.infrastructure.database.sqlite_ledger_repository import (
            SqliteCounterpartyRepository, SqliteLedgerRepository,
        )
        run_migrations(DATABASE_PATH)
        ledger_repo, cp_repo = SqliteLedgerRepository(DATABASE_PATH), SqliteCounterpartyRepository(DATABASE_PATH)
        print(f"DB: {DATABASE_PATH}")

    ledger = TankLedger(ledger_repo, cp_repo)
    forecaster = ConsumptionForecaster(ledger_repo, cp_repo)
    tenant = f"{args.tenant}-{rng.randrange(10**6):06d}"
    fleet = seed_fleet(ledger, cp_repo, tenant, args.tanks, args.vehicles)

    now = datetime.now(timezone.utc)
    intents = [generate_intent(fleet, now, rng) for _ in range(max(0, args.events))]
    print(f"Simulando | tenant={tenant} | tanques={len(fleet.tanks)} | eventos={len(intents)} | threads={args.workers}")
    burst = run_burst(ledger, tenant, intents, args.workers)

    by_type: Dict[str, int] = Counter(t.type.value for t in burst.applied)
    print(f"Aplicados: {len(burst.applied)} {dict(by_type)} | Rejeitados: {dict(burst.errors)}")
    for tank in fleet.tanks:
        balance = ledger.current_balance(tenant, tank.id)
        replayed = ledger.verify(tenant, tank.id)
        fc = forecaster.forecast(tenant, tank.id, now)
        print(f"  {tank.id}: saldo={balance:.2f} replay={replayed:.2f} "
              f"24h={fc.daily_rate:.2f} dias={fc.days_remaining if fc.is_unbounded else round(fc.days_remaining, 1)} "
              f"baixo={'sim' if fc.low_fuel else 'não'} alerta={fc.severity.value}")


if __name__ == "__main__":
    main()
