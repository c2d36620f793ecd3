# src/domain/use_cases/tank_ledger.py
from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar
import logging
import random
import time
import uuid

from config.settings import LEDGER_MAX_ATTEMPTS, LEDGER_RETRY_BASE_DELAY, LEDGER_RETRY_MAX_DELAY
from src.domain.entities.tank import Tank
from src.domain.entities.transaction import Transaction
from src.domain.enums import CounterpartyKind, TransactionType
from src.domain.errors import (
    CapacityExceededError,
    ConcurrencyConflictError,
    InsufficientVolumeError,
    LedgerIntegrityError,
    LedgerTimeoutError,
    NotFoundError,
    ValidationError,
)
from src.domain.repositories.counterparty_repository import ICounterpartyRepository
from src.domain.repositories.ledger_repository import ILedgerRepository
from src.domain.use_cases.tenant_scope import TenantScope
from src.domain.value_objects import ensure_finite, ensure_utc

log = logging.getLogger("fuel_ledger.usecases.ledger")

T = TypeVar("T")

# contraparte exigida por tipo de lançamento (ajuste aceita qualquer uma ou nenhuma)
_EXPECTED_KIND = {
    TransactionType.PURCHASE: CounterpartyKind.VENDOR,
    TransactionType.DISPENSE: CounterpartyKind.VEHICLE,
    TransactionType.ADJUSTMENT: None,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TankLedger:
    """
    Único ponto de mutação do saldo de um tanque.

    Cada `apply` faz leitura -> validação -> escrita condicional (compare-and-swap
    na versão do tanque). Se outro escritor venceu a corrida, recomeça do zero
    até `max_attempts` vezes e então levanta ConcurrencyConflictError.
    A contenção é por tanque: não existe lock global nem por tenant.
    """

    def __init__(
        self,
        ledger_repo: ILedgerRepository,
        counterparty_repo: ICounterpartyRepository,
        max_attempts: int = LEDGER_MAX_ATTEMPTS,
        retry_base_delay: float = LEDGER_RETRY_BASE_DELAY,
        retry_max_delay: float = LEDGER_RETRY_MAX_DELAY,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Injeta repositórios e parâmetros de re-tentativa.

        Args:
            ledger_repo: tanques + log de lançamentos.
            counterparty_repo: veículos/fornecedores (checagem de tenant).
            max_attempts: tentativas do compare-and-swap (>= 1).
            retry_base_delay: espera inicial entre tentativas (s).
            retry_max_delay: teto da espera entre tentativas (s).
            clock: fonte de "agora" em UTC (injetável nos testes).
            sleep: função de espera (injetável nos testes).
            monotonic: relógio usado no prazo (timeout).
        """
        if max_attempts < 1:
            raise ValidationError("max_attempts deve ser >= 1.")
        self.ledger_repo = ledger_repo
        self.scope = TenantScope(ledger_repo, counterparty_repo)
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.clock = clock
        self.sleep = sleep
        self.monotonic = monotonic

    # ---------- escrita ----------
    def apply(
        self,
        tenant_id: str,
        tank_id: str,
        type: TransactionType,
        quantity: float,
        occurred_at: Optional[datetime] = None,
        counterparty_id: Optional[str] = None,
        unit_cost: Optional[float] = None,
        remarks: Optional[str] = None,
        *,
        total_cost: Optional[float] = None,
        reference_id: Optional[str] = None,
        created_by: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Transaction:
        """
        Aplica um lançamento ao tanque de forma atômica.

        Fluxo:
            0) valida a intenção (tipo, quantidade, custos, datas) e o tenant
            1) lê saldo e versão do tanque
            2) calcula delta e level_after
            3) rejeita saldo negativo / acima da capacidade (sem escrever nada)
            4) grava lançamento + saldo se a versão ainda for a lida em 1
            5) se perdeu a corrida, volta a 1 (até max_attempts)

        Args:
            tenant_id: Tenant já autenticado do chamador.
            tank_id: Tanque alvo.
            type: purchase, dispense ou adjustment (enum ou texto).
            quantity: > 0 para compra/saída; para ajuste, o sinal indica o sentido.
            occurred_at: Data do evento (default: agora).
            counterparty_id: Fornecedor (compra) ou veículo (saída).
            unit_cost: Preço unitário, somente em compras.
            remarks: Observação (motivo do ajuste).
            total_cost: Custo total; se omitido com unit_cost, vira quantity × unit_cost.
            reference_id: Registro externo de origem; repetir o mesmo id devolve
                o lançamento já gravado em vez de duplicar (ValidationError se o
                tipo, a quantidade ou a contraparte divergirem do gravado).
            created_by: Usuário que originou o lançamento.
            timeout: Prazo total (s) para concluir; esgotado levanta LedgerTimeoutError.

        Returns:
            Transaction persistido.

        Raises:
            ValidationError, NotFoundError, TenantMismatchError,
            InsufficientVolumeError, CapacityExceededError,
            ConcurrencyConflictError (ou LedgerTimeoutError).
        """
        txn_type = self._parse_type(type)
        magnitude, direction = self._parse_quantity(txn_type, quantity)
        unit_cost, total_cost = self._parse_costs(txn_type, magnitude, unit_cost, total_cost)
        occurred = ensure_utc(occurred_at, "occurred_at") if occurred_at is not None else self.clock()
        if timeout is not None and timeout <= 0:
            raise ValidationError("timeout deve ser > 0.")

        self.scope.authorize(tenant_id, tank_id, counterparty_id, _EXPECTED_KIND[txn_type])

        def attempt(lock_timeout: Optional[float]) -> Optional[Transaction]:
            tank = self._load_active(tank_id)
            if reference_id is not None:
                existing = self.ledger_repo.find_by_reference(tank_id, reference_id)
                if existing is not None:
                    if (existing.type, existing.direction, existing.quantity, existing.counterparty_id) != (
                            txn_type, direction, magnitude, counterparty_id):
                        log.warning("transaction_reference_conflict tank=%s ref=%s txn=%s",
                                    tank_id, reference_id, existing.id)
                        raise ValidationError(
                            f"reference_id {reference_id!r} já foi usado no lançamento {existing.id} "
                            "com outro tipo, quantidade ou contraparte."
                        )
                    log.info("transaction_deduplicated tank=%s ref=%s txn=%s", tank_id, reference_id, existing.id)
                    return existing

            delta = direction * magnitude
            level_after = tank.current_volume + delta
            if level_after < 0:
                log.warning("transaction_rejected tank=%s type=%s qty=%.3f reason=insufficient available=%.3f",
                            tank_id, txn_type.value, magnitude, tank.current_volume)
                raise InsufficientVolumeError(tank_id, magnitude, tank.current_volume)
            if level_after > tank.capacity:
                log.warning("transaction_rejected tank=%s type=%s qty=%.3f reason=capacity free=%.3f",
                            tank_id, txn_type.value, magnitude, tank.free_capacity)
                raise CapacityExceededError(tank_id, magnitude, tank.free_capacity)

            txn = Transaction(
                id=str(uuid.uuid4()),
                tank_id=tank.id,
                tenant_id=tank.tenant_id,
                type=txn_type,
                quantity=magnitude,
                direction=direction,
                level_before=tank.current_volume,
                level_after=level_after,
                occurred_at=occurred,
                recorded_at=self.clock(),
                sequence=tank.version + 1,
                unit=tank.unit,
                unit_cost=unit_cost,
                total_cost=total_cost,
                counterparty_id=counterparty_id,
                remarks=remarks,
                reference_id=reference_id,
                created_by=created_by,
            )
            if not self.ledger_repo.commit(txn, expected_version=tank.version, lock_timeout=lock_timeout):
                return None
            log.info("transaction_applied tank=%s type=%s qty=%.3f level_before=%.3f level_after=%.3f seq=%s",
                     tank_id, txn_type.value, magnitude, txn.level_before, txn.level_after, txn.sequence)
            return txn

        return self._with_retries(tank_id, attempt, timeout)

    def deactivate(self, tenant_id: str, tank_id: str, timeout: Optional[float] = None) -> Tank:
        """
        Aposenta o tanque (soft delete): o histórico continua legível, mas
        novos lançamentos são recusados. Idempotente.
        """
        self.scope.authorize(tenant_id, tank_id)

        def attempt(lock_timeout: Optional[float]) -> Optional[Tank]:
            tank = self.ledger_repo.get_tank(tank_id)
            if tank is None:
                raise NotFoundError("Tanque", tank_id)
            if not tank.is_active:
                return tank
            retired = tank.deactivated(self.clock())
            if not self.ledger_repo.replace_tank(retired, expected_version=tank.version,
                                                 lock_timeout=lock_timeout):
                return None
            log.info("tank_deactivated tank=%s version=%s", tank_id, retired.version)
            return retired

        return self._with_retries(tank_id, attempt, timeout)

    def provision(self, tank: Tank) -> Tank:
        """
        Persiste um tanque recém-criado pelo provisionamento de tenants.
        O saldo informado vira o saldo de abertura (initial_volume) e a versão começa em 0.
        """
        fresh = replace(tank, version=0, initial_volume=tank.current_volume,
                        last_updated=tank.last_updated or self.clock())
        self.ledger_repo.add_tank(fresh)
        log.info("tank_provisioned tank=%s tenant=%s fuel=%s capacity=%.3f volume=%.3f",
                 fresh.id, fresh.tenant_id, fresh.fuel_type.value, fresh.capacity, fresh.current_volume)
        return fresh

    # ---------- leitura ----------
    def current_balance(self, tenant_id: str, tank_id: str) -> float:
        """Saldo persistido mais recente (sem lock)."""
        return self.scope.authorize(tenant_id, tank_id).tank.current_volume

    def replay(self, tenant_id: str, tank_id: str) -> float:
        """
        Recalcula o saldo a partir do saldo de abertura somando os deltas
        na ordem de persistência.
        """
        tank = self.scope.authorize(tenant_id, tank_id).tank
        level = tank.initial_volume
        for txn in self.ledger_repo.ledger(tank_id):
            level = level + txn.delta
        return level

    def verify(self, tenant_id: str, tank_id: str) -> float:
        """
        Audita o encadeamento do log: cada level_before precisa ser o level_after
        anterior, nenhum saldo fora de 0..capacidade e o replay igual ao saldo atual.

        Returns:
            O saldo reconstruído (igual ao atual).

        Raises:
            LedgerIntegrityError: na primeira divergência encontrada.
        """
        tank = self.scope.authorize(tenant_id, tank_id).tank
        level = tank.initial_volume
        last_seq = 0
        for txn in self.ledger_repo.ledger(tank_id):
            if txn.sequence <= last_seq:
                raise LedgerIntegrityError(f"Sequência fora de ordem no lançamento {txn.id}")
            if txn.level_before != level:
                raise LedgerIntegrityError(
                    f"Quebra de encadeamento no lançamento {txn.id}: "
                    f"level_before={txn.level_before} esperado={level}"
                )
            if not (0.0 <= txn.level_after <= tank.capacity):
                raise LedgerIntegrityError(f"Saldo fora da faixa no lançamento {txn.id}")
            level = level + txn.delta
            last_seq = txn.sequence
        if level != tank.current_volume:
            raise LedgerIntegrityError(
                f"Replay do tanque {tank_id} resulta em {level}, saldo persistido {tank.current_volume}"
            )
        return level

    # ---------- helpers ----------
    def _with_retries(self, tank_id: str, attempt: Callable[[Optional[float]], Optional[T]],
                      timeout: Optional[float]) -> T:
        """
        Executa `attempt` até ele devolver algo diferente de None (None = perdeu o
        compare-and-swap ou não obteve o lock de escrita). Erros de domínio sobem
        na hora, sem nova tentativa.

        `attempt` recebe o tempo que resta até o prazo (None sem prazo), para que
        a espera por lock no armazenamento não ultrapasse o timeout do chamador.
        """
        deadline = self.monotonic() + timeout if timeout is not None else None
        for n in range(1, self.max_attempts + 1):
            remaining = deadline - self.monotonic() if deadline is not None else None
            if remaining is not None and remaining <= 0:
                log.error("ledger_timeout tank=%s attempts=%s timeout=%.3f", tank_id, n - 1, timeout)
                raise LedgerTimeoutError(tank_id, n - 1, timeout)

            result = attempt(remaining)
            if result is not None:
                return result

            log.warning("cas_conflict tank=%s attempt=%s/%s", tank_id, n, self.max_attempts)
            if n < self.max_attempts:
                delay = min(self.retry_max_delay, self.retry_base_delay * (2 ** (n - 1)))
                delay *= random.uniform(0.5, 1.0)
                if deadline is not None:
                    delay = min(delay, max(0.0, deadline - self.monotonic()))
                if delay > 0:
                    self.sleep(delay)

        log.error("cas_retries_exhausted tank=%s attempts=%s", tank_id, self.max_attempts)
        raise ConcurrencyConflictError(tank_id, self.max_attempts)

    def _load_active(self, tank_id: str) -> Tank:
        tank = self.ledger_repo.get_tank(tank_id)
        if tank is None:
            raise NotFoundError("Tanque", tank_id)
        if not tank.is_active:
            raise ValidationError(f"Tanque {tank_id} está inativo.")
        return tank

    @staticmethod
    def _parse_type(value) -> TransactionType:
        try:
            return TransactionType(value)
        except ValueError as e:
            raise ValidationError(f"Tipo de lançamento desconhecido: {value!r}") from e

    @staticmethod
    def _parse_quantity(txn_type: TransactionType, quantity: float):
        """
        Separa módulo e sentido.
        - compra: +quantity; saída: -quantity (ambos exigem quantity > 0)
        - ajuste: o sinal informado é o sentido; zero é recusado
        """
        value = ensure_finite(quantity, "quantity")
        if txn_type is TransactionType.ADJUSTMENT:
            if value == 0:
                raise ValidationError("Ajuste precisa de quantidade diferente de zero.")
            return abs(value), (1 if value > 0 else -1)
        if value <= 0:
            raise ValidationError(f"Quantidade deve ser > 0: {quantity!r}")
        return value, (1 if txn_type is TransactionType.PURCHASE else -1)

    @staticmethod
    def _parse_costs(txn_type: TransactionType, magnitude: float,
                     unit_cost: Optional[float], total_cost: Optional[float]):
        if unit_cost is not None:
            if txn_type is not TransactionType.PURCHASE:
                raise ValidationError("unit_cost só é aceito em compras.")
            unit_cost = ensure_finite(unit_cost, "unit_cost")
            if unit_cost < 0:
                raise ValidationError("unit_cost não pode ser negativo.")
        if total_cost is not None:
            total_cost = ensure_finite(total_cost, "total_cost")
            if total_cost < 0:
                raise ValidationError("total_cost não pode ser negativo.")
        elif unit_cost is not None:
            total_cost = magnitude * unit_cost
        return unit_cost, total_cost
