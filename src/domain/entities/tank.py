from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from src.domain.enums import FuelType, FuelUnit
from src.domain.errors import ValidationError
from src.domain.value_objects import ensure_finite, ensure_utc


@dataclass(frozen=True)
class Tank:
    """
    Representa um tanque físico de combustível de um tenant (subsidiária).
    - Imutável (dataclass frozen); cada mudança gera nova instância com `version` + 1
    - Valida campos essenciais no __post_init__
    - Só o TankLedger produz novas versões com saldo diferente
    - Serializa para dicionário com valores prontos para API/log
    """
    id: str
    tenant_id: str
    fuel_type: FuelType
    capacity: float                 # litros ou kg, conforme `unit`
    current_volume: float = 0.0
    low_threshold: float = 0.0
    unit: FuelUnit = FuelUnit.LITERS
    location: str = ""
    version: int = 0
    last_updated: Optional[datetime] = None
    is_active: bool = True
    initial_volume: Optional[float] = None   # saldo de abertura (base do replay)

    def __post_init__(self):
        """
        Regras de consistência de dados:
        - id e tenant_id não podem ser vazios
        - fuel_type/unit aceitam o enum ou seu valor textual
        - capacidade > 0
        - 0 <= current_volume <= capacidade (idem initial_volume)
        - low_threshold >= 0
        """
        if not str(self.id).strip():
            raise ValidationError("Id do tanque não pode estar vazio.")
        if not str(self.tenant_id).strip():
            raise ValidationError("Tenant do tanque não pode estar vazio.")
        try:
            object.__setattr__(self, "fuel_type", FuelType(self.fuel_type))
        except ValueError as e:
            raise ValidationError(f"Tipo de combustível desconhecido: {self.fuel_type!r}") from e
        try:
            object.__setattr__(self, "unit", FuelUnit(self.unit))
        except ValueError as e:
            raise ValidationError(f"Unidade desconhecida: {self.unit!r}") from e

        capacity = ensure_finite(self.capacity, "capacity")
        volume = ensure_finite(self.current_volume, "current_volume")
        threshold = ensure_finite(self.low_threshold, "low_threshold")
        if capacity <= 0:
            raise ValidationError("Capacidade deve ser > 0.")
        if not (0.0 <= volume <= capacity):
            raise ValidationError(f"Saldo fora da faixa 0..{capacity}: {volume}")
        if threshold < 0:
            raise ValidationError("Limite de nível baixo não pode ser negativo.")
        object.__setattr__(self, "capacity", capacity)
        object.__setattr__(self, "current_volume", volume)
        object.__setattr__(self, "low_threshold", threshold)

        if self.initial_volume is None:
            object.__setattr__(self, "initial_volume", volume)
        else:
            initial = ensure_finite(self.initial_volume, "initial_volume")
            if not (0.0 <= initial <= capacity):
                raise ValidationError(f"Saldo inicial fora da faixa 0..{capacity}: {initial}")
            object.__setattr__(self, "initial_volume", initial)

        if self.version < 0:
            raise ValidationError("Versão não pode ser negativa.")
        if self.last_updated is not None:
            object.__setattr__(self, "last_updated", ensure_utc(self.last_updated, "last_updated"))

    @property
    def free_capacity(self) -> float:
        """Espaço livre no tanque (capacidade - saldo)."""
        return self.capacity - self.current_volume

    @property
    def fill_ratio(self) -> float:
        """Fração ocupada, entre 0 e 1."""
        return self.current_volume / self.capacity

    @property
    def is_low(self) -> bool:
        """Nível baixo quando o saldo está igual ou abaixo do limite configurado."""
        return self.current_volume <= self.low_threshold

    def with_balance(self, level: float, when: Optional[datetime] = None) -> "Tank":
        """Nova versão do tanque com o saldo informado (usada pelos repositórios no commit)."""
        return replace(
            self,
            current_volume=level,
            version=self.version + 1,
            last_updated=when or datetime.now(timezone.utc),
        )

    def deactivated(self, when: Optional[datetime] = None) -> "Tank":
        """Nova versão do tanque marcada como inativa (soft delete)."""
        return replace(
            self,
            is_active=False,
            version=self.version + 1,
            last_updated=when or datetime.now(timezone.utc),
        )

    def to_dict(self) -> dict:
        """
        Serialização amigável para APIs/logs.
        - enums exportados pelo valor textual
        - 'fill_ratio' arredondado em 3 casas decimais
        """
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "fuel_type": self.fuel_type.value,
            "capacity": self.capacity,
            "current_volume": self.current_volume,
            "low_threshold": self.low_threshold,
            "unit": self.unit.value,
            "location": self.location,
            "version": self.version,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "is_active": self.is_active,
            "initial_volume": self.initial_volume,
            "fill_ratio": round(self.fill_ratio, 3),
            "is_low": self.is_low,
        }
