# conexão com o sqlite usada pelos repositórios
# uma conexão por operação: seguro para várias threads/processos escrevendo no mesmo arquivo

import sqlite3

from config.database import BUSY_TIMEOUT, DATABASE_PATH


class DatabaseManager:
    """
    Abre a conexão no __enter__ e fecha no __exit__.

    - isolation_level=None: transações são abertas explicitamente (BEGIN IMMEDIATE)
    - o modo WAL do arquivo é ligado uma vez por run_migrations
    - busy timeout: escritores concorrentes esperam o lock em vez de falhar
    """

    def __init__(self, db_path: str = str(DATABASE_PATH), timeout: float = BUSY_TIMEOUT):
        self.db_path = db_path
        self.timeout = timeout
        self.conexao = None

    def __enter__(self):
        self.conexao = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        self.conexao.row_factory = sqlite3.Row
        self.conexao.execute("PRAGMA foreign_keys = ON")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.conexao:
            self.conexao.close()
            self.conexao = None
