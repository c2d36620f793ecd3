import math
from datetime import timedelta

import pytest

from conftest import NOW, OTHER_TENANT, TENANT
from src.domain.entities.tank import Tank
from src.domain.enums import FuelType, Severity
from src.domain.errors import TenantMismatchError
from src.domain.use_cases.consumption_forecaster import forecast_from_history
from src.domain.value_objects import UNBOUNDED


def dispense(env, qty, hours_ago, vehicle="veh-1"):
    return env.ledger.apply(TENANT, "tank-1", "dispense", qty, NOW - timedelta(hours=hours_ago),
                            counterparty_id=vehicle)


def test_sem_consumo_retorna_sentinela(env):
    fc = env.forecaster.forecast(TENANT, "tank-1", NOW)
    assert fc.days_remaining is UNBOUNDED
    assert fc.is_unbounded
    assert fc.daily_rate == 0.0
    assert fc.to_dict()["days_remaining"] == "unbounded"
    assert str(fc.days_remaining) == "∞"


def test_consumo_antigo_nao_conta_nas_24h(env):
    dispense(env, 40, hours_ago=30)
    fc = env.forecaster.forecast(TENANT, "tank-1", NOW)
    assert fc.days_remaining is UNBOUNDED
    assert fc.weekly_total == 40.0
    assert not isinstance(fc.days_remaining, float) or math.isfinite(fc.days_remaining)


def test_janelas_diaria_semanal_mensal(env):
    dispense(env, 10, hours_ago=1)
    dispense(env, 15, hours_ago=23)
    dispense(env, 20, hours_ago=24)        # exatamente no limite: fora da janela (as_of-24h, as_of]
    dispense(env, 30, hours_ago=24 * 6)
    dispense(env, 5, hours_ago=24 * 20)
    dispense(env, 7, hours_ago=24 * 40)    # fora de todas as janelas
    env.ledger.apply(TENANT, "tank-1", "purchase", 100, NOW - timedelta(hours=2), counterparty_id="ven-1")
    env.ledger.apply(TENANT, "tank-1", "adjustment", -3, NOW - timedelta(hours=2))

    fc = env.forecaster.forecast(TENANT, "tank-1", NOW)
    assert fc.daily_rate == 25.0
    assert fc.weekly_total == 75.0
    assert fc.monthly_total == 80.0
    assert fc.average_daily_rate == pytest.approx(80.0 / 30)

    balance = 200 - (10 + 15 + 20 + 30 + 5 + 7) + 100 - 3
    assert fc.current_volume == balance
    assert fc.days_remaining == pytest.approx(balance / 25.0)
    assert fc.low_fuel is (balance <= 150)


def test_lancamentos_futuros_ficam_de_fora(env):
    dispense(env, 10, hours_ago=-2)
    fc = env.forecaster.forecast(TENANT, "tank-1", NOW)
    assert fc.daily_rate == 0.0


def test_nivel_baixo_no_limite(env):
    dispense(env, 50, hours_ago=1)
    fc = env.forecaster.forecast(TENANT, "tank-1", NOW)
    assert fc.current_volume == 150.0
    assert fc.low_fuel is True
    assert fc.days_remaining == pytest.approx(3.0)


def test_lista_tanques_em_nivel_baixo(env):
    assert env.forecaster.low_fuel_tanks(TENANT, NOW) == []
    dispense(env, 60, hours_ago=1)
    low = env.forecaster.low_fuel_tanks(TENANT, NOW)
    assert [f.tank_id for f in low] == ["tank-1"]


def test_previsao_respeita_tenant(env):
    with pytest.raises(TenantMismatchError):
        env.forecaster.forecast(OTHER_TENANT, "tank-1", NOW)


@pytest.mark.parametrize("volume, threshold, expected", [
    (50.0, 20.0, Severity.CRITICAL),    # 5% da capacidade, mesmo com limite abaixo disso
    (50.5, 20.0, Severity.NORMAL),
    (40.0, 150.0, Severity.CRITICAL),
    (150.0, 150.0, Severity.WARNING),
    (150.5, 150.0, Severity.NORMAL),
])
def test_severidade_do_estoque(volume, threshold, expected):
    tank = Tank(id="t", tenant_id=TENANT, fuel_type=FuelType.DIESEL, capacity=1000.0,
                current_volume=volume, low_threshold=threshold)
    fc = forecast_from_history(tank, [], NOW)
    assert fc.severity is expected
    assert fc.to_dict()["severity"] == expected.value


def test_lista_inclui_tanque_critico_abaixo_do_limite(env):
    env.ledger.provision(Tank(id="tank-2", tenant_id=TENANT, fuel_type=FuelType.PETROL,
                              capacity=1000.0, current_volume=40.0, low_threshold=20.0))
    low = env.forecaster.low_fuel_tanks(TENANT, NOW)
    assert [f.tank_id for f in low] == ["tank-2"]
    assert low[0].low_fuel is False
    assert low[0].severity is Severity.CRITICAL
