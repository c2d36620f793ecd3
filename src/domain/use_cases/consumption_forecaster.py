# src/domain/use_cases/consumption_forecaster.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Union
import logging

import numpy as np

from config.settings import CRITICAL_FILL_PERCENT, FORECAST_WINDOWS
from src.domain.entities.tank import Tank
from src.domain.entities.transaction import Transaction
from src.domain.enums import Severity, TransactionType
from src.domain.repositories.counterparty_repository import ICounterpartyRepository
from src.domain.repositories.ledger_repository import ILedgerRepository
from src.domain.use_cases.tenant_scope import TenantScope
from src.domain.value_objects import UNBOUNDED, HistoryFilters, Unbounded, ensure_utc

log = logging.getLogger("fuel_ledger.usecases.forecast")

DaysRemaining = Union[float, Unbounded]


@dataclass(frozen=True)
class ConsumptionForecast:
    """
    DTO imutável com a previsão de consumo de um tanque.

    Atributos:
        daily_rate: soma das saídas nas últimas 24h (não é média suavizada).
        weekly_total: soma das saídas nos últimos 7 dias.
        monthly_total: soma das saídas nos últimos 30 dias.
        average_daily_rate: monthly_total / 30 (informativo; não entra em days_remaining).
        days_remaining: current_volume / daily_rate, ou UNBOUNDED sem consumo em 24h.
        low_fuel: current_volume <= low_threshold.
        severity: CRITICAL até CRITICAL_FILL_PERCENT da capacidade (mesmo com
            low_threshold menor), WARNING quando low_fuel, senão NORMAL.
    """
    tank_id: str
    as_of: datetime
    current_volume: float
    fill_ratio: float
    daily_rate: float
    weekly_total: float
    monthly_total: float
    average_daily_rate: float
    days_remaining: DaysRemaining
    low_fuel: bool
    severity: Severity = Severity.NORMAL

    @property
    def is_unbounded(self) -> bool:
        return self.days_remaining is UNBOUNDED

    def to_dict(self) -> dict:
        return {
            "tank_id": self.tank_id,
            "as_of": self.as_of.isoformat(),
            "current_volume": self.current_volume,
            "fill_ratio": round(self.fill_ratio, 3),
            "daily_rate": self.daily_rate,
            "weekly_total": self.weekly_total,
            "monthly_total": self.monthly_total,
            "average_daily_rate": self.average_daily_rate,
            "days_remaining": self.days_remaining.value if self.is_unbounded else self.days_remaining,
            "low_fuel": self.low_fuel,
            "severity": self.severity.value,
        }


def fuel_severity(tank: Tank, critical_percent: float = CRITICAL_FILL_PERCENT) -> Severity:
    """Nível de alerta do estoque; o crítico vale mesmo com low_threshold abaixo dele."""
    if tank.current_volume * 100.0 <= tank.capacity * critical_percent:
        return Severity.CRITICAL
    if tank.is_low:
        return Severity.WARNING
    return Severity.NORMAL


def forecast_from_history(
    tank: Tank,
    dispenses: Iterable[Transaction],
    as_of: datetime,
    windows: Optional[Dict[str, timedelta]] = None,
) -> ConsumptionForecast:
    """
    Função pura: calcula a previsão a partir do tanque e das saídas.

    Cada janela é (as_of - duração, as_of], comparada com `occurred_at`.
    Lançamentos que não sejam `dispense` ou fora das janelas são ignorados.
    """
    windows = windows or FORECAST_WINDOWS
    as_of = ensure_utc(as_of, "as_of")

    rows = [(t.occurred_at.timestamp(), t.quantity) for t in dispenses
            if t.type is TransactionType.DISPENSE]
    stamps = np.array([r[0] for r in rows], dtype=float)
    qty = np.array([r[1] for r in rows], dtype=float)
    end = as_of.timestamp()

    def _window_sum(span: timedelta) -> float:
        if qty.size == 0:
            return 0.0
        mask = (stamps > end - span.total_seconds()) & (stamps <= end)
        return float(qty[mask].sum())

    daily = _window_sum(windows["daily"])
    weekly = _window_sum(windows["weekly"])
    monthly = _window_sum(windows["monthly"])
    month_days = windows["monthly"].total_seconds() / 86400.0

    # sem consumo nas últimas 24h: sentinela, nunca divisão por zero
    days_remaining: DaysRemaining = tank.current_volume / daily if daily > 0 else UNBOUNDED

    return ConsumptionForecast(
        tank_id=tank.id,
        as_of=as_of,
        current_volume=tank.current_volume,
        fill_ratio=tank.fill_ratio,
        daily_rate=daily,
        weekly_total=weekly,
        monthly_total=monthly,
        average_daily_rate=monthly / month_days,
        days_remaining=days_remaining,
        low_fuel=tank.is_low,
        severity=fuel_severity(tank),
    )


class ConsumptionForecaster:
    """
    Deriva consumo diário/semanal/mensal do histórico de saídas e projeta
    dias restantes e alerta de nível baixo. Somente leitura.
    """

    def __init__(
        self,
        ledger_repo: ILedgerRepository,
        counterparty_repo: ICounterpartyRepository,
        windows: Optional[Dict[str, timedelta]] = None,
    ) -> None:
        self.ledger_repo = ledger_repo
        self.scope = TenantScope(ledger_repo, counterparty_repo)
        self.windows = windows or FORECAST_WINDOWS

    def forecast(self, tenant_id: str, tank_id: str, as_of: Optional[datetime] = None) -> ConsumptionForecast:
        """
        Previsão de consumo do tanque em `as_of` (default: agora).

        Args:
            tenant_id: Tenant do chamador.
            tank_id: Tanque alvo.
            as_of: Instante de referência das janelas.

        Returns:
            ConsumptionForecast.
        """
        tank = self.scope.authorize(tenant_id, tank_id).tank
        return self._forecast_tank(tank, as_of)

    def low_fuel_tanks(self, tenant_id: str, as_of: Optional[datetime] = None) -> List[ConsumptionForecast]:
        """
        Previsões dos tanques ativos do tenant que estão em nível baixo.
        Só calcula a condição; a entrega do alerta é do chamador.
        """
        low = []
        for tank in self.ledger_repo.list_tanks(tenant_id, active_only=True):
            fc = self._forecast_tank(tank, as_of)
            if fc.severity is not Severity.NORMAL:
                low.append(fc)
        if low:
            log.warning("low_fuel tenant=%s tanks=%s", tenant_id, ",".join(f.tank_id for f in low))
        return low

    def _forecast_tank(self, tank: Tank, as_of: Optional[datetime]) -> ConsumptionForecast:
        as_of = ensure_utc(as_of, "as_of") if as_of is not None else datetime.now(timezone.utc)
        widest = max(self.windows.values())
        filters = HistoryFilters(type=TransactionType.DISPENSE, date_from=as_of - widest, date_to=as_of)
        dispenses = self.ledger_repo.list_transactions(tank.id, filters)
        fc = forecast_from_history(tank, dispenses, as_of, self.windows)
        log.info("forecast_generated tank=%s daily=%.3f days_remaining=%s low=%s severity=%s",
                 tank.id, fc.daily_rate, fc.days_remaining, fc.low_fuel, fc.severity.value)
        return fc
