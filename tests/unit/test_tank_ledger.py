from datetime import timedelta

import pytest

from conftest import NOW, OTHER_TENANT, TENANT, build_env
from src.domain.enums import TransactionType
from src.domain.errors import (
    CapacityExceededError,
    ConcurrencyConflictError,
    InsufficientVolumeError,
    LedgerIntegrityError,
    LedgerTimeoutError,
    NotFoundError,
    TenantMismatchError,
    ValidationError,
)


def snapshot(env):
    tank = env.repo.get_tank("tank-1")
    return tank.current_volume, tank.version, len(env.repo.ledger("tank-1"))


# ---------- cenário de referência ----------

def test_cenario_compra_e_saida(env):
    ledger = env.ledger

    with pytest.raises(CapacityExceededError) as exc:
        ledger.apply(TENANT, "tank-1", "purchase", 900, NOW, counterparty_id="ven-1")
    assert exc.value.requested == 900 and exc.value.available == 800
    assert ledger.current_balance(TENANT, "tank-1") == 200

    t = ledger.apply(TENANT, "tank-1", TransactionType.PURCHASE, 700, NOW, counterparty_id="ven-1", unit_cost=6.0)
    assert (t.level_before, t.level_after) == (200, 900)
    assert t.total_cost == 4200.0
    assert ledger.current_balance(TENANT, "tank-1") == 900

    with pytest.raises(InsufficientVolumeError) as exc:
        ledger.apply(TENANT, "tank-1", "dispense", 1000, NOW, counterparty_id="veh-1")
    assert exc.value.available == 900
    assert ledger.current_balance(TENANT, "tank-1") == 900

    ledger.apply(TENANT, "tank-1", "dispense", 800, NOW, counterparty_id="veh-1")
    assert ledger.current_balance(TENANT, "tank-1") == 100
    assert env.forecaster.forecast(TENANT, "tank-1", NOW).low_fuel is True


def test_falha_nao_deixa_rastro(env):
    before = snapshot(env)
    with pytest.raises(InsufficientVolumeError):
        env.ledger.apply(TENANT, "tank-1", "dispense", 200.01, NOW, counterparty_id="veh-1")
    with pytest.raises(CapacityExceededError):
        env.ledger.apply(TENANT, "tank-1", "adjustment", 800.5, NOW)
    assert snapshot(env) == before


def test_limites_exatos_sao_aceitos(env):
    env.ledger.apply(TENANT, "tank-1", "purchase", 800, NOW, counterparty_id="ven-1")
    assert env.ledger.current_balance(TENANT, "tank-1") == 1000
    env.ledger.apply(TENANT, "tank-1", "dispense", 1000, NOW, counterparty_id="veh-1")
    assert env.ledger.current_balance(TENANT, "tank-1") == 0


# ---------- validação ----------

@pytest.mark.parametrize("type_, qty", [
    ("purchase", 0), ("dispense", -5), ("adjustment", 0), ("dispense", float("inf")), ("refill", 10),
])
def test_intencoes_invalidas(env, type_, qty):
    with pytest.raises(ValidationError):
        env.ledger.apply(TENANT, "tank-1", type_, qty, NOW)


def test_custo_unitario_somente_em_compra(env):
    with pytest.raises(ValidationError):
        env.ledger.apply(TENANT, "tank-1", "dispense", 10, NOW, counterparty_id="veh-1", unit_cost=6.0)


def test_custo_total_informado_nao_e_recalculado(env):
    t = env.ledger.apply(TENANT, "tank-1", "purchase", 100, NOW, counterparty_id="ven-1",
                         unit_cost=6.0, total_cost=550.0)
    assert t.total_cost == 550.0


def test_contraparte_do_tipo_errado(env):
    with pytest.raises(ValidationError):
        env.ledger.apply(TENANT, "tank-1", "purchase", 10, NOW, counterparty_id="veh-1")


def test_isolamento_de_tenant(env):
    before = snapshot(env)
    with pytest.raises(TenantMismatchError):
        env.ledger.apply(OTHER_TENANT, "tank-1", "dispense", 10, NOW)
    with pytest.raises(TenantMismatchError):
        env.ledger.apply(TENANT, "tank-1", "dispense", 10, NOW, counterparty_id="veh-x")
    with pytest.raises(TenantMismatchError):
        env.ledger.current_balance(OTHER_TENANT, "tank-1")
    with pytest.raises(NotFoundError):
        env.ledger.apply(TENANT, "tank-404", "dispense", 10, NOW)
    assert snapshot(env) == before


# ---------- ajustes, auditoria, idempotência ----------

def test_ajuste_com_sinal(env):
    down = env.ledger.apply(TENANT, "tank-1", "adjustment", -30, remarks="evaporação")
    up = env.ledger.apply(TENANT, "tank-1", "adjustment", 10.5, remarks="aferição")
    assert (down.direction, down.quantity, down.level_after) == (-1, 30.0, 170.0)
    assert (up.direction, up.quantity, up.level_after) == (1, 10.5, 180.5)
    assert down.counterparty_id is None and down.remarks == "evaporação"
    with pytest.raises(InsufficientVolumeError):
        env.ledger.apply(TENANT, "tank-1", "adjustment", -500)


def test_registro_externo_nao_duplica(env):
    first = env.ledger.apply(TENANT, "tank-1", "dispense", 20, NOW, counterparty_id="veh-1",
                             reference_id="fuel-log-42", created_by="op-1")
    again = env.ledger.apply(TENANT, "tank-1", "dispense", 20, NOW, counterparty_id="veh-1",
                             reference_id="fuel-log-42")
    assert again.id == first.id
    assert env.ledger.current_balance(TENANT, "tank-1") == 180
    assert len(env.repo.ledger("tank-1")) == 1
    assert first.created_by == "op-1"


def test_replay_reproduz_saldo(env):
    ops = [("purchase", 500, "ven-1"), ("dispense", 120.25, "veh-1"), ("adjustment", -3.1, None),
           ("dispense", 77.7, "veh-2"), ("purchase", 33.33, "ven-1"), ("adjustment", 0.7, None)]
    for i, (kind, qty, cp) in enumerate(ops):
        env.ledger.apply(TENANT, "tank-1", kind, qty, NOW - timedelta(hours=i), counterparty_id=cp)
    balance = env.ledger.current_balance(TENANT, "tank-1")
    assert env.ledger.replay(TENANT, "tank-1") == balance
    assert env.ledger.verify(TENANT, "tank-1") == balance

    log = env.repo.ledger("tank-1")
    assert [t.sequence for t in log] == list(range(1, len(ops) + 1))
    for prev, cur in zip(log, log[1:]):
        assert cur.level_before == prev.level_after
    assert all(0 <= t.level_after <= 1000 for t in log)


def test_verify_detecta_saldo_divergente(mem_env):
    mem_env.ledger.apply(TENANT, "tank-1", "dispense", 50, NOW, counterparty_id="veh-1")
    tank = mem_env.repo.get_tank("tank-1")
    # corrompe o saldo por fora do ledger
    mem_env.repo._tanks["tank-1"] = tank.with_balance(tank.current_volume + 1)
    with pytest.raises(LedgerIntegrityError):
        mem_env.ledger.verify(TENANT, "tank-1")


# ---------- ciclo de vida ----------

def test_tanque_desativado_recusa_lancamentos(env):
    env.ledger.apply(TENANT, "tank-1", "dispense", 50, NOW, counterparty_id="veh-1")
    retired = env.ledger.deactivate(TENANT, "tank-1")
    assert retired.is_active is False
    assert env.ledger.deactivate(TENANT, "tank-1").version == retired.version
    with pytest.raises(ValidationError):
        env.ledger.apply(TENANT, "tank-1", "dispense", 10, NOW, counterparty_id="veh-1")
    assert env.ledger.current_balance(TENANT, "tank-1") == 150
    assert len(list(env.query.history(TENANT, "tank-1"))) == 1
    assert list(env.repo.list_tanks(TENANT)) == []


def test_provisionamento_duplicado(env):
    with pytest.raises(ValidationError):
        env.ledger.provision(env.tank)


# ---------- concorrência (conflitos forçados) ----------

def test_conflito_esgota_tentativas(tmp_path, monkeypatch):
    env = build_env("memory", tmp_path, max_attempts=3)
    calls = []

    def always_stale(txn, expected_version, lock_timeout=None):
        calls.append(expected_version)
        return False

    monkeypatch.setattr(env.repo, "commit", always_stale)
    with pytest.raises(ConcurrencyConflictError) as exc:
        env.ledger.apply(TENANT, "tank-1", "dispense", 10, NOW, counterparty_id="veh-1")
    assert exc.value.attempts == 3
    assert len(calls) == 3
    assert env.repo.get_tank("tank-1").current_volume == 200


def test_conflito_resolvido_na_nova_tentativa(tmp_path, monkeypatch):
    env = build_env("memory", tmp_path)
    real_commit = env.repo.commit
    state = {"raced": False}

    def racing_commit(txn, expected_version, lock_timeout=None):
        if not state["raced"]:
            # outro escritor vence a corrida entre a leitura e a escrita
            state["raced"] = True
            tank = env.repo.get_tank("tank-1")
            rival = txn.__class__(**{**txn.__dict__, "id": "rival", "quantity": 100.0,
                                     "level_after": tank.current_volume - 100.0})
            assert real_commit(rival, expected_version)
            return real_commit(txn, expected_version)
        return real_commit(txn, expected_version)

    monkeypatch.setattr(env.repo, "commit", racing_commit)
    t = env.ledger.apply(TENANT, "tank-1", "dispense", 10, NOW, counterparty_id="veh-1")
    assert (t.level_before, t.level_after, t.sequence) == (100.0, 90.0, 2)
    assert env.ledger.verify(TENANT, "tank-1") == 90.0


def test_timeout_antes_de_concluir(tmp_path, monkeypatch):
    env = build_env("memory", tmp_path, max_attempts=1000)
    clock = iter(range(0, 10_000))
    env.ledger.monotonic = lambda: float(next(clock))
    monkeypatch.setattr(env.repo, "commit", lambda txn, expected_version, lock_timeout=None: False)
    with pytest.raises(LedgerTimeoutError) as exc:
        env.ledger.apply(TENANT, "tank-1", "dispense", 10, NOW, counterparty_id="veh-1", timeout=3)
    assert isinstance(exc.value, ConcurrencyConflictError)
    assert exc.value.attempts < 1000
    assert env.repo.get_tank("tank-1").current_volume == 200


def test_timeout_invalido(env):
    with pytest.raises(ValidationError):
        env.ledger.apply(TENANT, "tank-1", "dispense", 10, NOW, counterparty_id="veh-1", timeout=0)


@pytest.mark.parametrize("kind, qty, cp", [
    ("dispense", 25, "veh-1"),
    ("dispense", 20, "veh-2"),
    ("adjustment", -20, None),
])
def test_registro_externo_com_intencao_divergente(env, kind, qty, cp):
    env.ledger.apply(TENANT, "tank-1", "dispense", 20, NOW, counterparty_id="veh-1", reference_id="fuel-log-7")
    with pytest.raises(ValidationError):
        env.ledger.apply(TENANT, "tank-1", kind, qty, NOW, counterparty_id=cp, reference_id="fuel-log-7")
    assert env.ledger.current_balance(TENANT, "tank-1") == 180
    assert len(env.repo.ledger("tank-1")) == 1
