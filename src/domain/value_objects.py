from __future__ import annotations
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from src.domain.enums import TransactionType
from src.domain.errors import ValidationError


def ensure_utc(value: datetime, field: str = "timestamp") -> datetime:
    """
    Normaliza um datetime para UTC.

    - valores "naive" (sem tzinfo) são assumidos como UTC
    - valores com outro fuso são convertidos
    - qualquer outra coisa levanta ValidationError
    """
    if not isinstance(value, datetime):
        raise ValidationError(f"{field} inválido: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_finite(value: float, field: str) -> float:
    """Converte para float e rejeita NaN/infinito."""
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field} inválido: {value!r}") from e
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{field} deve ser finito: {value!r}")
    return number


class Unbounded(Enum):
    """
    Sentinela tipado para "dias restantes" quando não há consumo na janela.

    Substitui o `∞` de exibição; nunca é um float infinito nem NaN.
    """
    UNBOUNDED = "unbounded"

    def __str__(self) -> str:
        return "∞"


UNBOUNDED = Unbounded.UNBOUNDED


@dataclass(frozen=True)
class HistoryFilters:
    """
    Value Object com os filtros do histórico de lançamentos.

    - `date_from`/`date_to` são inclusivos e comparados com `occurred_at`
    - `type` aceita o enum ou seu valor textual ("purchase", ...)
    """
    type: Optional[TransactionType] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    counterparty_id: Optional[str] = None

    def __post_init__(self):
        if self.type is not None and not isinstance(self.type, TransactionType):
            try:
                object.__setattr__(self, "type", TransactionType(self.type))
            except ValueError as e:
                raise ValidationError(f"Tipo de lançamento desconhecido: {self.type!r}") from e
        if self.date_from is not None:
            object.__setattr__(self, "date_from", ensure_utc(self.date_from, "date_from"))
        if self.date_to is not None:
            object.__setattr__(self, "date_to", ensure_utc(self.date_to, "date_to"))
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValidationError("date_from deve ser anterior ou igual a date_to.")

    def matches(self, txn) -> bool:
        """Indica se um Transaction passa pelos filtros (usado pelas implementações em memória)."""
        if self.type is not None and txn.type is not self.type:
            return False
        if self.date_from is not None and txn.occurred_at < self.date_from:
            return False
        if self.date_to is not None and txn.occurred_at > self.date_to:
            return False
        if self.counterparty_id is not None and txn.counterparty_id != self.counterparty_id:
            return False
        return True
