# configurações globais do ledger de tanques
import os
from datetime import timedelta

# tentativas do compare-and-swap por aplicação (inclui a primeira)
LEDGER_MAX_ATTEMPTS = int(os.getenv("LEDGER_MAX_ATTEMPTS", "5"))

# backoff entre tentativas (segundos)
LEDGER_RETRY_BASE_DELAY = float(os.getenv("LEDGER_RETRY_BASE_DELAY", "0.005"))
LEDGER_RETRY_MAX_DELAY = float(os.getenv("LEDGER_RETRY_MAX_DELAY", "0.1"))

# janelas usadas pela previsão de consumo

FORECAST_WINDOWS = {
    'daily': timedelta(hours=24),
    'weekly': timedelta(days=7),
    'monthly': timedelta(days=30),
}

# estoque crítico: até este percentual da capacidade, qualquer que seja o low_threshold
CRITICAL_FILL_PERCENT = 5.0

# paginação do histórico
HISTORY_PAGE_SIZE = int(os.getenv("HISTORY_PAGE_SIZE", "50"))
RECENT_ACTIVITY_LIMIT = 10
