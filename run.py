# run.py — Dashboard dos tanques (somente leitura)
# =============================================================================
# HOME: tanques do tenant em 2 colunas (cards com saldo, % e previsão)
# HISTÓRICO: lançamentos filtráveis + totais por período
# Datas/horas "DD/MM HH:MM"
# Execução: streamlit run run.py
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime, time, timezone
from typing import List

import pandas as pd
import streamlit as st

from config.database import DATABASE_PATH
from src.domain.entities.transaction import Transaction
from src.domain.enums import Severity, TransactionType
from src.domain.errors import LedgerError
from src.domain.use_cases.consumption_forecaster import ConsumptionForecaster
from src.domain.use_cases.ledger_query import LedgerQuery
from src.domain.value_objects import HistoryFilters
from src.infrastructure.database.migrations import run_migrations
from src.infrastructure.database.sqlite_ledger_repository import (
    SqliteCounterpartyRepository,
    SqliteLedgerRepository,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

st.set_page_config(page_title="Tanques de combustível", layout="wide")

# =============================================================================
# ROTAS
# =============================================================================
ROUTES = ("home", "history")
if "route" not in st.session_state:
    st.session_state.route = "home"


def navigate(to: str, **params):
    st.session_state.route = to
    for k, v in params.items():
        st.session_state[f"param_{k}"] = v
    st.rerun()


# =============================================================================
# SERVIÇOS (cache por sessão do servidor)
# =============================================================================
@st.cache_resource
def services():
    run_migrations(DATABASE_PATH)
    ledger_repo = SqliteLedgerRepository(DATABASE_PATH)
    cp_repo = SqliteCounterpartyRepository(DATABASE_PATH)
    return ledger_repo, LedgerQuery(ledger_repo, cp_repo), ConsumptionForecaster(ledger_repo, cp_repo)


def fmt_dt(value: datetime) -> str:
    return value.astimezone().strftime("%d/%m %H:%M")


def transactions_frame(txns: List[Transaction]) -> pd.DataFrame:
    return pd.DataFrame([{
        "Data": fmt_dt(t.occurred_at),
        "Tipo": t.type.value,
        "Quantidade": f"{'+' if t.direction > 0 else '-'}{t.quantity:.1f} {t.unit.value}",
        "Antes": round(t.level_before, 1),
        "Depois": round(t.level_after, 1),
        "Contraparte": t.counterparty_id or "",
        "Custo": t.total_cost,
        "Obs.": t.remarks or "",
    } for t in txns])


# =============================================================================
# PÁGINAS
# =============================================================================
def page_home(tenant_id: str):
    ledger_repo, query, forecaster = services()
    tanks = list(ledger_repo.list_tanks(tenant_id))
    st.subheader("Tanques")
    if not tanks:
        st.info("Nenhum tanque ativo para este tenant.")
        return

    now = datetime.now(timezone.utc)
    cols = st.columns(2)
    for i, tank in enumerate(tanks):
        fc = forecaster.forecast(tenant_id, tank.id, now)
        with cols[i % 2].container(border=True):
            st.markdown(f"**{tank.location or tank.id}** · {tank.fuel_type.value}")
            st.progress(min(1.0, fc.fill_ratio), text=f"{fc.current_volume:.1f} / {tank.capacity:.0f} {tank.unit.value}")
            c1, c2, c3 = st.columns(3)
            c1.metric("Últimas 24h", f"{fc.daily_rate:.1f}")
            c2.metric("7 dias", f"{fc.weekly_total:.1f}")
            c3.metric("30 dias", f"{fc.monthly_total:.1f}")
            days = str(fc.days_remaining) if fc.is_unbounded else f"{fc.days_remaining:.1f}"
            st.caption(f"Dias restantes: {days}")
            if fc.severity is Severity.CRITICAL:
                st.error(f"Nível crítico ({fc.fill_ratio:.0%} da capacidade)")
            elif fc.severity is Severity.WARNING:
                st.warning(f"Nível baixo (limite {tank.low_threshold:.0f} {tank.unit.value})")
            if st.button("Histórico", key=f"hist_{tank.id}", use_container_width=True):
                navigate("history", tank_id=tank.id)


def page_history(tenant_id: str):
    _, query, _ = services()
    tank_id = st.session_state.get("param_tank_id")
    if st.button("← Tanques"):
        navigate("home")
    if not tank_id:
        st.info("Selecione um tanque.")
        return

    st.subheader(f"Histórico · {tank_id}")
    c1, c2, c3, c4 = st.columns(4)
    kind = c1.selectbox("Tipo", ["todos"] + [t.value for t in TransactionType])
    d_from = c2.date_input("De", value=None)
    d_to = c3.date_input("Até", value=None)
    counterparty = c4.text_input("Contraparte")

    filters = HistoryFilters(
        type=None if kind == "todos" else kind,
        date_from=datetime.combine(d_from, time.min, tzinfo=timezone.utc) if d_from else None,
        date_to=datetime.combine(d_to, time.max, tzinfo=timezone.utc) if d_to else None,
        counterparty_id=counterparty or None,
    )
    history = query.history(tenant_id, tank_id, filters)
    total = history.count()
    pages = max(1, -(-total // history.page_size))
    number = st.number_input("Página", min_value=1, max_value=pages, value=1)
    st.caption(f"{total} lançamento(s)")
    st.dataframe(transactions_frame(history.page(int(number))), use_container_width=True, hide_index=True)

    summary = query.summary(tenant_id, tank_id, filters.date_from, filters.date_to)
    s1, s2, s3 = st.columns(3)
    s1.metric("Compras", f"{summary['purchase_volume']:.1f}", f"{summary['purchase_count']} lanç.")
    s2.metric("Saídas", f"{summary['dispense_volume']:.1f}", f"{summary['dispense_count']} lanç.")
    s3.metric("Variação líquida", f"{summary['net_change']:.1f}")

    period = st.radio("Totais por", ["daily", "weekly", "monthly"], horizontal=True)
    totals = query.period_totals(tenant_id, tank_id, period, filters.date_from, filters.date_to)
    st.dataframe(totals, use_container_width=True)


# =============================================================================
# MAIN
# =============================================================================
tenant = st.sidebar.text_input("Tenant", value=st.session_state.get("tenant", "demo"))
st.session_state.tenant = tenant

try:
    if st.session_state.route == "history":
        page_history(tenant)
    else:
        page_home(tenant)
except LedgerError as e:
    st.error(str(e))
