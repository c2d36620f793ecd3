"""
Módulo de definição dos lançamentos do ledger de tanques.

Este módulo concentra o tipo imutável `Transaction`: uma linha do livro-razão
de um tanque, criada uma única vez pelo `TankLedger` e nunca alterada ou
removida (correções são novos lançamentos do tipo `adjustment`).

Princípios e invariantes adotados
---------------------------------
- **Imutabilidade**: `Transaction` é um `dataclass(frozen=True)`.
- **Quantidade sem sinal**: `quantity` é sempre > 0; o sentido vem de
  `direction` (+1 entrada, -1 saída). Compras são sempre +1, saídas para
  veículos sempre -1; ajustes podem ter qualquer sentido.
- **Encadeamento**: `level_after == level_before + delta` e `level_after >= 0`.
  O teto (capacidade) depende do tanque e é validado pelo ledger.
- **Temporalidade em UTC**: `occurred_at` (data do evento, informada pelo
  chamador) e `recorded_at` (momento da persistência) são normalizados para UTC.
- **Ordem**: `sequence` é a versão do tanque produzida pelo compare-and-swap
  vencedor; ordena totalmente os lançamentos de um tanque.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any

from src.domain.enums import FuelUnit, TransactionType
from src.domain.errors import ValidationError
from src.domain.value_objects import ensure_finite, ensure_utc


@dataclass(frozen=True)
class Transaction:
    """
    Entidade imutável que representa um lançamento no ledger de um tanque.

    Attributes:
        id: Identificador único do lançamento.
        tank_id: Tanque ao qual o lançamento pertence.
        tenant_id: Subsidiária dona do tanque.
        type: purchase, dispense ou adjustment.
        quantity: Quantidade movimentada, sempre positiva.
        direction: +1 para entrada, -1 para saída.
        level_before: Saldo do tanque imediatamente antes do lançamento.
        level_after: Saldo do tanque imediatamente depois do lançamento.
        occurred_at: Data/hora do evento informada pelo chamador.
        recorded_at: Data/hora da persistência.
        sequence: Versão do tanque gerada por este lançamento.
        unit: Unidade do tanque no momento do lançamento.
        unit_cost: Preço unitário (somente compras).
        total_cost: Custo total (descritivo, sem vínculo obrigatório com quantity × unit_cost).
        counterparty_id: Fornecedor (compra), veículo (saída) ou nada (ajuste).
        remarks: Observação livre (motivo do ajuste, p.ex.).
        reference_id: Registro externo que originou o lançamento (abastecimento, compra).
        created_by: Usuário que originou o lançamento.
    """

    id: str
    tank_id: str
    tenant_id: str
    type: TransactionType
    quantity: float
    direction: int
    level_before: float
    level_after: float
    occurred_at: datetime
    recorded_at: datetime
    sequence: int
    unit: FuelUnit = FuelUnit.LITERS
    unit_cost: Optional[float] = None
    total_cost: Optional[float] = None
    counterparty_id: Optional[str] = None
    remarks: Optional[str] = None
    reference_id: Optional[str] = None
    created_by: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", TransactionType(self.type))
        object.__setattr__(self, "unit", FuelUnit(self.unit))
        object.__setattr__(self, "occurred_at", ensure_utc(self.occurred_at, "occurred_at"))
        object.__setattr__(self, "recorded_at", ensure_utc(self.recorded_at, "recorded_at"))

        if self.quantity <= 0:
            raise ValidationError("Quantidade do lançamento deve ser > 0.")
        if self.direction not in (1, -1):
            raise ValidationError(f"Sentido inválido: {self.direction}")
        if self.type is TransactionType.PURCHASE and self.direction != 1:
            raise ValidationError("Compra precisa ser uma entrada.")
        if self.type is TransactionType.DISPENSE and self.direction != -1:
            raise ValidationError("Abastecimento precisa ser uma saída.")
        if self.level_after < 0:
            raise ValidationError("Saldo após o lançamento não pode ser negativo.")
        if self.level_after != self.level_before + self.delta:
            raise ValidationError("level_after não confere com level_before + quantidade.")
        if self.unit_cost is not None:
            ensure_finite(self.unit_cost, "unit_cost")
        if self.total_cost is not None:
            ensure_finite(self.total_cost, "total_cost")

    @property
    def delta(self) -> float:
        """Variação com sinal aplicada ao saldo."""
        return self.direction * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        """
        Serializa o lançamento em dicionário simples.

        Returns:
            Dict[str, Any] com enums como texto e datas em ISO-8601.
        """
        return {
            "id": self.id,
            "tank_id": self.tank_id,
            "tenant_id": self.tenant_id,
            "type": self.type.value,
            "quantity": self.quantity,
            "direction": self.direction,
            "delta": self.delta,
            "level_before": self.level_before,
            "level_after": self.level_after,
            "occurred_at": self.occurred_at.isoformat(),
            "recorded_at": self.recorded_at.isoformat(),
            "sequence": self.sequence,
            "unit": self.unit.value,
            "unit_cost": self.unit_cost,
            "total_cost": self.total_cost,
            "counterparty_id": self.counterparty_id,
            "remarks": self.remarks,
            "reference_id": self.reference_id,
            "created_by": self.created_by,
        }
