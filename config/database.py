# config do banco
import os
from pathlib import Path

# banco
DATABASE_PATH = Path(os.getenv("FUEL_LEDGER_DB", "data/fuel_ledger.db"))
DATABASE_URL = f"sqlite:///{DATABASE_PATH}"

# segundos que uma conexão espera pelo lock de escrita do sqlite
BUSY_TIMEOUT = 30.0


# vai criar um repositorio se nao existir
DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
