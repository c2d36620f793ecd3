# estrutura do banco
import logging
import sqlite3
from pathlib import Path

from config.database import DATABASE_PATH

log = logging.getLogger("fuel_ledger.infrastructure.migrations")


def migration_001():
    """Cria a tabela 'tanks' com saldo, capacidade e versão (controle otimista)."""
    return """
    CREATE TABLE tanks (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        fuel_type TEXT NOT NULL CHECK (fuel_type IN ('diesel', 'petrol', 'cng')),
        capacity REAL NOT NULL CHECK (capacity > 0),
        current_volume REAL NOT NULL DEFAULT 0 CHECK (current_volume >= 0 AND current_volume <= capacity),
        low_threshold REAL NOT NULL DEFAULT 0,
        unit TEXT NOT NULL DEFAULT 'liters' CHECK (unit IN ('liters', 'kg')),
        location TEXT NOT NULL DEFAULT '',
        version INTEGER NOT NULL DEFAULT 0,
        last_updated TEXT,
        is_active BOOLEAN NOT NULL DEFAULT 1,
        initial_volume REAL NOT NULL DEFAULT 0,
        created_at DATETIME DEFAULT (datetime('now'))
    );
    """


def migration_002():
    """Cria a tabela 'counterparties' (veículos e fornecedores, só o necessário ao ledger)."""
    return """
    CREATE TABLE counterparties (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        kind TEXT NOT NULL CHECK (kind IN ('vehicle', 'vendor')),
        name TEXT NOT NULL DEFAULT ''
    );
    """


def migration_003():
    """Cria a tabela 'tank_transactions': log somente-anexação dos lançamentos."""
    return """
    CREATE TABLE tank_transactions (
        id TEXT PRIMARY KEY,
        tank_id TEXT NOT NULL,
        tenant_id TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('purchase', 'dispense', 'adjustment')),
        quantity REAL NOT NULL CHECK (quantity > 0),
        direction INTEGER NOT NULL CHECK (direction IN (1, -1)),
        level_before REAL NOT NULL,
        level_after REAL NOT NULL CHECK (level_after >= 0),
        occurred_at TEXT NOT NULL,
        recorded_at TEXT NOT NULL,
        sequence INTEGER NOT NULL,
        unit TEXT NOT NULL,
        unit_cost REAL,
        total_cost REAL,
        counterparty_id TEXT,
        remarks TEXT,
        reference_id TEXT,
        created_by TEXT,
        UNIQUE (tank_id, sequence),
        FOREIGN KEY (tank_id) REFERENCES tanks(id)
    );
    """


def migration_004():
    """Cria índice para o histórico por (tank_id, occurred_at, recorded_at)."""
    return """
    CREATE INDEX idx_tank_transactions_history ON tank_transactions(tank_id, occurred_at, recorded_at);
    """


def migration_005():
    """Garante no banco a idempotência por registro externo (tank_id, reference_id)."""
    return """
    CREATE UNIQUE INDEX idx_tank_transactions_reference ON tank_transactions(tank_id, reference_id)
    WHERE reference_id IS NOT NULL;
    """


def migration_006():
    """Bloqueia UPDATE em lançamentos (log imutável)."""
    return """
    CREATE TRIGGER tank_transactions_no_update BEFORE UPDATE ON tank_transactions
    BEGIN
        SELECT RAISE(ABORT, 'tank_transactions is append-only');
    END;
    """


def migration_007():
    """Bloqueia DELETE em lançamentos (correções são novos ajustes)."""
    return """
    CREATE TRIGGER tank_transactions_no_delete BEFORE DELETE ON tank_transactions
    BEGIN
        SELECT RAISE(ABORT, 'tank_transactions is append-only');
    END;
    """


def migration_008():
    """Cria índice para listar os tanques de um tenant."""
    return """
    CREATE INDEX idx_tanks_tenant ON tanks(tenant_id, is_active);
    """


AVAILABLE_MIGRATIONS = {
    '001': migration_001,
    '002': migration_002,
    '003': migration_003,
    '004': migration_004,
    '005': migration_005,
    '006': migration_006,
    '007': migration_007,
    '008': migration_008,
}


# tabela para controlar migrations executadas
def create_migrations_table(db_path=DATABASE_PATH):
    """Garante a existência da tabela de controle 'migrations'."""
    with sqlite3.connect(db_path) as connec:
        cursor = connec.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS migrations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                version TEXT UNIQUE NOT NULL,
                executed_at DATETIME DEFAULT (datetime('now'))
            );
        """)
        connec.commit()
    connec.close()


def get_executed_migrations(db_path=DATABASE_PATH):
    """
    Retorna a lista das migrations já executadas (strings de versão).

    Observação:
        Se a tabela 'migrations' ainda não existir, retorna lista vazia.
    """
    try:
        with sqlite3.connect(db_path) as connec:
            cursor = connec.cursor()
            cursor.execute("SELECT version FROM migrations ORDER BY version")
            results = cursor.fetchall()
        connec.close()
        return [row[0] for row in results]
    except sqlite3.OperationalError:
        # se ainda nao existir ai retorna a lista zerada
        return []


def run_migrations(db_path=DATABASE_PATH):
    """
    Executa as migrations pendentes, na ordem declarada em AVAILABLE_MIGRATIONS.
    Idempotente: migrations já registradas são puladas.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    create_migrations_table(db_path)

    # WAL é persistente no arquivo: leitores não bloqueiam o escritor nem são bloqueados por ele
    connec = sqlite3.connect(db_path)
    try:
        connec.execute("PRAGMA journal_mode = WAL")
    finally:
        connec.close()
    executed = get_executed_migrations(db_path)

    for version, migration_func in AVAILABLE_MIGRATIONS.items():
        if version not in executed:
            log.info("migration_start version=%s", version)
            execute_migration(migration_func, version, db_path)
            log.info("migration_done version=%s", version)


def execute_migration(migration_func, version, db_path=DATABASE_PATH):
    """
    Executa uma migration específica e registra a versão na tabela 'migrations'.

    Args:
        migration_func: função que retorna o SQL (DDL/DML) da migration.
        version: string de versão (ex.: '001', '002').
        db_path: arquivo do banco.
    """
    connec = sqlite3.connect(db_path)
    try:
        with connec:
            connec.execute(migration_func())
            connec.execute("INSERT INTO migrations (version) VALUES (?)", (version,))
    except sqlite3.Error:
        log.error("migration_failed version=%s", version)
        raise
    finally:
        connec.close()


if __name__ == "__main__":
    print("testando sistema de migrations...")

    run_migrations()

    print("\nverificando migrations executadas:")
    print(f"Migrations executadas: {get_executed_migrations()}")
