# implementação em memória dos repositórios do ledger
# usada nos testes e quando o ledger roda embutido, sem banco

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Tuple

from src.domain.entities.counterparty import Counterparty
from src.domain.entities.tank import Tank
from src.domain.entities.transaction import Transaction
from src.domain.errors import ValidationError
from src.domain.value_objects import HistoryFilters


def _history_key(t: Transaction):
    return (t.occurred_at, t.recorded_at, t.sequence)


class InMemoryLedgerRepository:
    """
    Tanques e lançamentos em dicionários.

    O lock protege somente as escritas (commit/add/replace), que nunca esperam
    por outro processo: `lock_timeout` é aceito e ignorado. Leituras pegam
    referências/cópias prontas e nunca esperam pelos escritores.
    """

    def __init__(self) -> None:
        self._tanks: Dict[str, Tank] = {}
        self._log: Dict[str, List[Transaction]] = {}
        self._by_reference: Dict[Tuple[str, str], Transaction] = {}
        self._lock = threading.Lock()

    # ---------- tanques ----------
    def get_tank(self, tank_id: str) -> Optional[Tank]:
        return self._tanks.get(tank_id)

    def list_tanks(self, tenant_id: str, active_only: bool = True) -> Iterable[Tank]:
        tanks = [t for t in list(self._tanks.values()) if t.tenant_id == tenant_id]
        if active_only:
            tanks = [t for t in tanks if t.is_active]
        return sorted(tanks, key=lambda t: t.id)

    def add_tank(self, tank: Tank) -> None:
        with self._lock:
            if tank.id in self._tanks:
                raise ValidationError(f"Tanque já existe: {tank.id}")
            self._tanks[tank.id] = tank
            self._log[tank.id] = []

    def replace_tank(self, tank: Tank, expected_version: int, lock_timeout: Optional[float] = None) -> bool:
        with self._lock:
            current = self._tanks.get(tank.id)
            if current is None or current.version != expected_version:
                return False
            if tank.current_volume != current.current_volume:
                raise ValidationError("Saldo só muda através de um lançamento.")
            self._tanks[tank.id] = tank
            return True

    # ---------- lançamentos ----------
    def commit(self, txn: Transaction, expected_version: int, lock_timeout: Optional[float] = None) -> bool:
        with self._lock:
            current = self._tanks.get(txn.tank_id)
            if current is None or current.version != expected_version:
                return False
            if txn.reference_id is not None and (txn.tank_id, txn.reference_id) in self._by_reference:
                return False
            self._log[txn.tank_id].append(txn)
            if txn.reference_id is not None:
                self._by_reference[(txn.tank_id, txn.reference_id)] = txn
            self._tanks[txn.tank_id] = current.with_balance(txn.level_after, txn.recorded_at)
            return True

    def find_by_reference(self, tank_id: str, reference_id: str) -> Optional[Transaction]:
        return self._by_reference.get((tank_id, reference_id))

    def list_transactions(
        self,
        tank_id: str,
        filters: Optional[HistoryFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        after: Optional[Transaction] = None,
    ) -> List[Transaction]:
        filters = filters or HistoryFilters()
        rows = [t for t in list(self._log.get(tank_id, ())) if filters.matches(t)]
        if after is not None:
            cursor = _history_key(after)
            rows = [t for t in rows if _history_key(t) < cursor]
        rows.sort(key=_history_key, reverse=True)
        end = None if limit is None else offset + limit
        return rows[offset:end]

    def count_transactions(self, tank_id: str, filters: Optional[HistoryFilters] = None) -> int:
        filters = filters or HistoryFilters()
        return sum(1 for t in list(self._log.get(tank_id, ())) if filters.matches(t))

    def ledger(self, tank_id: str) -> List[Transaction]:
        return sorted(self._log.get(tank_id, ()), key=lambda t: t.sequence)


class InMemoryCounterpartyRepository:
    """Veículos e fornecedores em um dicionário."""

    def __init__(self, items: Iterable[Counterparty] = ()) -> None:
        self._items: Dict[str, Counterparty] = {c.id: c for c in items}

    def add(self, counterparty: Counterparty) -> None:
        self._items[counterparty.id] = counterparty

    def get(self, counterparty_id: str) -> Optional[Counterparty]:
        return self._items.get(counterparty_id)
