# src/domain/use_cases/tenant_scope.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import logging

from src.domain.entities.counterparty import Counterparty
from src.domain.entities.tank import Tank
from src.domain.enums import CounterpartyKind
from src.domain.errors import NotFoundError, TenantMismatchError, ValidationError
from src.domain.repositories.counterparty_repository import ICounterpartyRepository
from src.domain.repositories.ledger_repository import ILedgerRepository

log = logging.getLogger("fuel_ledger.usecases.tenant_scope")


@dataclass(frozen=True)
class ScopeResult:
    """Entidades já carregadas e validadas pela checagem de tenant."""
    tank: Tank
    counterparty: Optional[Counterparty] = None


class TenantScope:
    """
    Garante que tanque e contraparte pertencem ao tenant do chamador.
    Somente leitura: não altera nada, apenas falha com TenantMismatchError.
    """

    def __init__(self, ledger_repo: ILedgerRepository, counterparty_repo: ICounterpartyRepository) -> None:
        self.ledger_repo = ledger_repo
        self.counterparty_repo = counterparty_repo

    def authorize(
        self,
        tenant_id: str,
        tank_id: str,
        counterparty_id: Optional[str] = None,
        expected_kind: Optional[CounterpartyKind] = None,
    ) -> ScopeResult:
        """
        Valida a posse do tanque (e da contraparte, se informada).

        Args:
            tenant_id: Tenant já autenticado do chamador.
            tank_id: Tanque alvo.
            counterparty_id: Veículo/fornecedor referenciado (opcional).
            expected_kind: Se informado, a contraparte precisa ser deste tipo.

        Raises:
            NotFoundError: tanque ou contraparte inexistente.
            TenantMismatchError: algum dos dois pertence a outro tenant.
            ValidationError: contraparte de tipo incompatível.
        """
        if not tenant_id:
            raise ValidationError("tenant_id é obrigatório.")

        tank = self.ledger_repo.get_tank(tank_id)
        if tank is None:
            raise NotFoundError("Tanque", tank_id)
        if tank.tenant_id != tenant_id:
            log.warning("tenant_mismatch tenant=%s tank=%s owner=%s", tenant_id, tank_id, tank.tenant_id)
            raise TenantMismatchError(tenant_id, "Tanque", tank_id)

        if counterparty_id is None:
            return ScopeResult(tank=tank)

        counterparty = self.counterparty_repo.get(counterparty_id)
        if counterparty is None:
            raise NotFoundError("Contraparte", counterparty_id)
        if counterparty.tenant_id != tenant_id:
            log.warning("tenant_mismatch tenant=%s counterparty=%s owner=%s",
                        tenant_id, counterparty_id, counterparty.tenant_id)
            raise TenantMismatchError(tenant_id, "Contraparte", counterparty_id)
        if expected_kind is not None and counterparty.kind is not expected_kind:
            raise ValidationError(
                f"Contraparte {counterparty_id} é {counterparty.kind.value}, "
                f"esperado {expected_kind.value}."
            )
        return ScopeResult(tank=tank, counterparty=counterparty)
