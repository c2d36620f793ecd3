from __future__ import annotations
from dataclasses import dataclass

from src.domain.enums import CounterpartyKind
from src.domain.errors import ValidationError


@dataclass(frozen=True)
class Counterparty:
    """
    Veículo ou fornecedor referenciado por um lançamento.

    O cadastro completo vive fora do ledger; aqui basta o necessário
    para a checagem de tenant e de tipo.
    """
    id: str
    tenant_id: str
    kind: CounterpartyKind
    name: str = ""

    def __post_init__(self):
        if not str(self.id).strip():
            raise ValidationError("Id da contraparte não pode estar vazio.")
        try:
            object.__setattr__(self, "kind", CounterpartyKind(self.kind))
        except ValueError as e:
            raise ValidationError(f"Tipo de contraparte desconhecido: {self.kind!r}") from e

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "kind": self.kind.value,
            "name": self.name,
        }
