# implementação concreta do ledger no sqlite
# o compare-and-swap é o UPDATE ... WHERE version = ? dentro de BEGIN IMMEDIATE,
# junto com o INSERT do lançamento: ou os dois entram, ou nenhum

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from config.database import BUSY_TIMEOUT, DATABASE_PATH
from src.domain.entities.counterparty import Counterparty
from src.domain.entities.tank import Tank
from src.domain.entities.transaction import Transaction
from src.domain.errors import ValidationError
from src.domain.value_objects import HistoryFilters, ensure_utc
from src.infrastructure.database.connection import DatabaseManager

log = logging.getLogger("fuel_ledger.infrastructure.sqlite")

_TXN_COLUMNS = (
    "id, tank_id, tenant_id, type, quantity, direction, level_before, level_after, "
    "occurred_at, recorded_at, sequence, unit, unit_cost, total_cost, "
    "counterparty_id, remarks, reference_id, created_by"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Datas sempre em UTC e com o mesmo formato: a ordem textual é a cronológica."""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_tank(row: sqlite3.Row) -> Tank:
    return Tank(
        id=row["id"],
        tenant_id=row["tenant_id"],
        fuel_type=row["fuel_type"],
        capacity=row["capacity"],
        current_volume=row["current_volume"],
        low_threshold=row["low_threshold"],
        unit=row["unit"],
        location=row["location"],
        version=row["version"],
        last_updated=_dt(row["last_updated"]),
        is_active=bool(row["is_active"]),
        initial_volume=row["initial_volume"],
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        tank_id=row["tank_id"],
        tenant_id=row["tenant_id"],
        type=row["type"],
        quantity=row["quantity"],
        direction=row["direction"],
        level_before=row["level_before"],
        level_after=row["level_after"],
        occurred_at=_dt(row["occurred_at"]),
        recorded_at=_dt(row["recorded_at"]),
        sequence=row["sequence"],
        unit=row["unit"],
        unit_cost=row["unit_cost"],
        total_cost=row["total_cost"],
        counterparty_id=row["counterparty_id"],
        remarks=row["remarks"],
        reference_id=row["reference_id"],
        created_by=row["created_by"],
    )


def _lock_wait(lock_timeout: Optional[float]) -> float:
    """Espera pelo lock de escrita limitada ao prazo que sobra para o chamador."""
    if lock_timeout is None:
        return BUSY_TIMEOUT
    return max(0.0, min(BUSY_TIMEOUT, lock_timeout))


def _is_locked(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


def _where(tank_id: str, filters: Optional[HistoryFilters],
           after: Optional[Transaction] = None) -> Tuple[str, list]:
    """Monta o WHERE do histórico a partir dos filtros e do cursor `after`."""
    clauses = ["tank_id = ?"]
    params: list = [tank_id]
    if after is not None:
        # estritamente depois do cursor na ordem occurred_at DESC, recorded_at DESC, sequence DESC
        occurred, recorded = _ts(after.occurred_at), _ts(after.recorded_at)
        clauses.append(
            "(occurred_at < ? OR (occurred_at = ? AND "
            "(recorded_at < ? OR (recorded_at = ? AND sequence < ?))))"
        )
        params += [occurred, occurred, recorded, recorded, after.sequence]
    if filters is not None:
        if filters.type is not None:
            clauses.append("type = ?")
            params.append(filters.type.value)
        if filters.date_from is not None:
            clauses.append("occurred_at >= ?")
            params.append(_ts(filters.date_from))
        if filters.date_to is not None:
            clauses.append("occurred_at <= ?")
            params.append(_ts(filters.date_to))
        if filters.counterparty_id is not None:
            clauses.append("counterparty_id = ?")
            params.append(filters.counterparty_id)
    return " AND ".join(clauses), params


class SqliteLedgerRepository:
    """Tanques e log de lançamentos no sqlite (ver migrations 001/003)."""

    def __init__(self, db_path: str = str(DATABASE_PATH)):
        self.db_path = str(db_path)

    # ---------- tanques ----------
    def get_tank(self, tank_id: str) -> Optional[Tank]:
        with DatabaseManager(self.db_path) as db:
            row = db.conexao.execute("SELECT * FROM tanks WHERE id = ?", (tank_id,)).fetchone()
        return _row_to_tank(row) if row else None

    def list_tanks(self, tenant_id: str, active_only: bool = True) -> Iterable[Tank]:
        sql = "SELECT * FROM tanks WHERE tenant_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        with DatabaseManager(self.db_path) as db:
            rows = db.conexao.execute(sql + " ORDER BY id", (tenant_id,)).fetchall()
        return [_row_to_tank(r) for r in rows]

    def add_tank(self, tank: Tank) -> None:
        with DatabaseManager(self.db_path) as db:
            try:
                db.conexao.execute(
                    """
                    INSERT INTO tanks (id, tenant_id, fuel_type, capacity, current_volume, low_threshold,
                                       unit, location, version, last_updated, is_active, initial_volume)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (tank.id, tank.tenant_id, tank.fuel_type.value, tank.capacity, tank.current_volume,
                     tank.low_threshold, tank.unit.value, tank.location, tank.version,
                     _ts(tank.last_updated), int(tank.is_active), tank.initial_volume),
                )
            except sqlite3.IntegrityError as e:
                raise ValidationError(f"Tanque já existe: {tank.id}") from e

    def replace_tank(self, tank: Tank, expected_version: int, lock_timeout: Optional[float] = None) -> bool:
        # o saldo fica de fora de propósito: só muda via commit()
        with DatabaseManager(self.db_path, timeout=_lock_wait(lock_timeout)) as db:
            try:
                cur = db.conexao.execute(
                    """
                    UPDATE tanks SET fuel_type = ?, capacity = ?, low_threshold = ?, unit = ?, location = ?,
                                     version = ?, last_updated = ?, is_active = ?
                    WHERE id = ? AND version = ?
                    """,
                    (tank.fuel_type.value, tank.capacity, tank.low_threshold, tank.unit.value, tank.location,
                     tank.version, _ts(tank.last_updated), int(tank.is_active), tank.id, expected_version),
                )
            except sqlite3.OperationalError as e:
                if not _is_locked(e):
                    raise
                log.warning("write_lock_busy tank=%s op=replace_tank", tank.id)
                return False
            return cur.rowcount == 1

    # ---------- lançamentos ----------
    def commit(self, txn: Transaction, expected_version: int, lock_timeout: Optional[float] = None) -> bool:
        with DatabaseManager(self.db_path, timeout=_lock_wait(lock_timeout)) as db:
            conn = db.conexao
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                # outro escritor segura o lock além do prazo: conta como corrida perdida
                if not _is_locked(e):
                    raise
                log.warning("write_lock_busy tank=%s op=commit", txn.tank_id)
                return False
            try:
                cur = conn.execute(
                    """
                    UPDATE tanks SET current_volume = ?, version = ?, last_updated = ?
                    WHERE id = ? AND version = ?
                    """,
                    (txn.level_after, txn.sequence, _ts(txn.recorded_at), txn.tank_id, expected_version),
                )
                if cur.rowcount != 1:
                    conn.execute("ROLLBACK")
                    return False
                if txn.reference_id is not None and conn.execute(
                    "SELECT 1 FROM tank_transactions WHERE tank_id = ? AND reference_id = ?",
                    (txn.tank_id, txn.reference_id),
                ).fetchone():
                    conn.execute("ROLLBACK")
                    return False
                conn.execute(
                    f"INSERT INTO tank_transactions ({_TXN_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (txn.id, txn.tank_id, txn.tenant_id, txn.type.value, txn.quantity, txn.direction,
                     txn.level_before, txn.level_after, _ts(txn.occurred_at), _ts(txn.recorded_at),
                     txn.sequence, txn.unit.value, txn.unit_cost, txn.total_cost, txn.counterparty_id,
                     txn.remarks, txn.reference_id, txn.created_by),
                )
                conn.execute("COMMIT")
                return True
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise

    def find_by_reference(self, tank_id: str, reference_id: str) -> Optional[Transaction]:
        with DatabaseManager(self.db_path) as db:
            row = db.conexao.execute(
                f"SELECT {_TXN_COLUMNS} FROM tank_transactions WHERE tank_id = ? AND reference_id = ?",
                (tank_id, reference_id),
            ).fetchone()
        return _row_to_transaction(row) if row else None

    def list_transactions(
        self,
        tank_id: str,
        filters: Optional[HistoryFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        after: Optional[Transaction] = None,
    ) -> List[Transaction]:
        where, params = _where(tank_id, filters, after)
        sql = (
            f"SELECT {_TXN_COLUMNS} FROM tank_transactions WHERE {where} "
            "ORDER BY occurred_at DESC, recorded_at DESC, sequence DESC LIMIT ? OFFSET ?"
        )
        params += [-1 if limit is None else limit, offset]
        with DatabaseManager(self.db_path) as db:
            rows = db.conexao.execute(sql, params).fetchall()
        return [_row_to_transaction(r) for r in rows]

    def count_transactions(self, tank_id: str, filters: Optional[HistoryFilters] = None) -> int:
        where, params = _where(tank_id, filters)
        with DatabaseManager(self.db_path) as db:
            (n,) = db.conexao.execute(f"SELECT COUNT(*) FROM tank_transactions WHERE {where}", params).fetchone()
        return n

    def ledger(self, tank_id: str) -> List[Transaction]:
        with DatabaseManager(self.db_path) as db:
            rows = db.conexao.execute(
                f"SELECT {_TXN_COLUMNS} FROM tank_transactions WHERE tank_id = ? ORDER BY sequence",
                (tank_id,),
            ).fetchall()
        return [_row_to_transaction(r) for r in rows]


class SqliteCounterpartyRepository:
    """Consulta (e cadastro mínimo, para seed/testes) de veículos e fornecedores."""

    def __init__(self, db_path: str = str(DATABASE_PATH)):
        self.db_path = str(db_path)

    def add(self, counterparty: Counterparty) -> None:
        with DatabaseManager(self.db_path) as db:
            db.conexao.execute(
                "INSERT OR REPLACE INTO counterparties (id, tenant_id, kind, name) VALUES (?, ?, ?, ?)",
                (counterparty.id, counterparty.tenant_id, counterparty.kind.value, counterparty.name),
            )

    def get(self, counterparty_id: str) -> Optional[Counterparty]:
        with DatabaseManager(self.db_path) as db:
            row = db.conexao.execute(
                "SELECT id, tenant_id, kind, name FROM counterparties WHERE id = ?", (counterparty_id,)
            ).fetchone()
        if row is None:
            return None
        return Counterparty(id=row["id"], tenant_id=row["tenant_id"], kind=row["kind"], name=row["name"])
