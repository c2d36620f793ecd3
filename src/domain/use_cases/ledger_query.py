# src/domain/use_cases/ledger_query.py
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional
import logging

import numpy as np
import pandas as pd

from config.settings import HISTORY_PAGE_SIZE, RECENT_ACTIVITY_LIMIT
from src.domain.entities.transaction import Transaction
from src.domain.enums import TransactionType
from src.domain.errors import ValidationError
from src.domain.repositories.counterparty_repository import ICounterpartyRepository
from src.domain.repositories.ledger_repository import ILedgerRepository
from src.domain.use_cases.tenant_scope import TenantScope
from src.domain.value_objects import HistoryFilters

log = logging.getLogger("fuel_ledger.usecases.query")

# regra de agrupamento do pandas por período
PERIOD_RULES = {
    "daily": "D",
    "weekly": "W",
    "monthly": "MS",
}

PERIOD_COLUMNS = ["purchase", "dispense", "adjustment", "net"]


class TransactionHistory:
    """
    Sequência preguiçosa, finita e reiniciável do histórico de um tanque.

    Cada iteração consulta o repositório página a página (occurred_at DESC,
    recorded_at DESC); iterar de novo recomeça do início e enxerga o estado
    persistido naquele momento.

    A iteração avança por cursor (o último item entregue), não por offset:
    lançamentos gravados no meio de uma passada não repetem nem pulam itens.
    """

    def __init__(self, repo: ILedgerRepository, tank_id: str,
                 filters: Optional[HistoryFilters] = None,
                 page_size: int = HISTORY_PAGE_SIZE) -> None:
        if page_size < 1:
            raise ValidationError("page_size deve ser >= 1.")
        self.repo = repo
        self.tank_id = tank_id
        self.filters = filters or HistoryFilters()
        self.page_size = page_size

    def __iter__(self) -> Iterator[Transaction]:
        cursor = None
        while True:
            batch = self.repo.list_transactions(self.tank_id, self.filters,
                                                limit=self.page_size, after=cursor)
            yield from batch
            if len(batch) < self.page_size:
                return
            cursor = batch[-1]

    def page(self, number: int, size: Optional[int] = None) -> List[Transaction]:
        """Página `number` (começando em 1) com `size` itens (default: page_size)."""
        size = size or self.page_size
        if number < 1 or size < 1:
            raise ValidationError("Página e tamanho devem ser >= 1.")
        return self.repo.list_transactions(self.tank_id, self.filters,
                                           limit=size, offset=(number - 1) * size)

    def count(self) -> int:
        return self.repo.count_transactions(self.tank_id, self.filters)

    def __len__(self) -> int:
        return self.count()


class LedgerQuery:
    """
    Leitura do ledger para dashboards e auditoria: saldo, histórico
    filtrável/paginado e agregados por período. Nunca escreve.
    """

    def __init__(self, ledger_repo: ILedgerRepository, counterparty_repo: ICounterpartyRepository,
                 page_size: int = HISTORY_PAGE_SIZE) -> None:
        self.ledger_repo = ledger_repo
        self.scope = TenantScope(ledger_repo, counterparty_repo)
        self.page_size = page_size

    def balance(self, tenant_id: str, tank_id: str) -> float:
        """Saldo atual do tanque (mesma leitura de TankLedger.current_balance)."""
        return self.scope.authorize(tenant_id, tank_id).tank.current_volume

    def history(self, tenant_id: str, tank_id: str,
                filters: Optional[HistoryFilters] = None,
                page_size: Optional[int] = None) -> TransactionHistory:
        """
        Histórico do tanque, ordenado por occurred_at DESC (desempate recorded_at DESC).

        Args:
            tenant_id: Tenant do chamador.
            tank_id: Tanque alvo.
            filters: tipo, intervalo de datas (inclusivo) e contraparte.
            page_size: tamanho das páginas buscadas no repositório.
        """
        self.scope.authorize(tenant_id, tank_id)
        return TransactionHistory(self.ledger_repo, tank_id, filters, page_size or self.page_size)

    def recent_activity(self, tenant_id: str, tank_id: str,
                        limit: int = RECENT_ACTIVITY_LIMIT) -> List[Transaction]:
        """Os `limit` lançamentos mais recentes do tanque."""
        return self.history(tenant_id, tank_id, page_size=limit).page(1)

    def summary(self, tenant_id: str, tank_id: str,
                date_from: Optional[datetime] = None,
                date_to: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Totais do período: contagem e quantidade por tipo, custo das compras e variação líquida.
        """
        filters = HistoryFilters(date_from=date_from, date_to=date_to)
        txns = list(self.history(tenant_id, tank_id, filters))

        summary: Dict[str, Any] = {"count": len(txns)}
        for t in TransactionType:
            of_type = [x for x in txns if x.type is t]
            summary[f"{t.value}_count"] = len(of_type)
            summary[f"{t.value}_volume"] = sum(x.quantity for x in of_type)
        summary["purchase_cost"] = sum(x.total_cost or 0.0 for x in txns
                                       if x.type is TransactionType.PURCHASE)
        summary["net_change"] = sum(x.delta for x in txns)
        log.info("summary_generated tank=%s count=%s", tank_id, summary["count"])
        return summary

    def period_totals(self, tenant_id: str, tank_id: str, period: str = "daily",
                      date_from: Optional[datetime] = None,
                      date_to: Optional[datetime] = None) -> pd.DataFrame:
        """
        Agregados por período (daily/weekly/monthly) sobre `occurred_at`.

        Returns:
            DataFrame indexado pelo início do período (UTC) com as colunas
            purchase, dispense (quantidades), adjustment (variação com sinal) e net.
        """
        rule = PERIOD_RULES.get(period)
        if rule is None:
            raise ValidationError(f"Período desconhecido: {period!r}")

        filters = HistoryFilters(date_from=date_from, date_to=date_to)
        txns = list(self.history(tenant_id, tank_id, filters))
        if not txns:
            return pd.DataFrame(columns=PERIOD_COLUMNS, dtype=float)

        df = pd.DataFrame({
            "occurred_at": pd.to_datetime([t.occurred_at for t in txns], utc=True),
            "type": [t.type.value for t in txns],
            "quantity": [t.quantity for t in txns],
            "delta": [t.delta for t in txns],
        })
        df["purchase"] = np.where(df["type"] == "purchase", df["quantity"], 0.0)
        df["dispense"] = np.where(df["type"] == "dispense", df["quantity"], 0.0)
        df["adjustment"] = np.where(df["type"] == "adjustment", df["delta"], 0.0)
        df["net"] = df["delta"]

        totals = df.set_index("occurred_at")[PERIOD_COLUMNS].sort_index().resample(rule).sum()
        log.info("period_totals_generated tank=%s period=%s rows=%s", tank_id, period, len(totals))
        return totals
