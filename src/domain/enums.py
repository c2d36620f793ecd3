from enum import Enum


class FuelType(Enum):
    """Tipo de combustível armazenado no tanque."""
    DIESEL = "diesel"
    PETROL = "petrol"
    CNG = "cng"


class FuelUnit(Enum):
    """Unidade de medida do tanque (volume ou massa)."""
    LITERS = "liters"   # volume
    KG = "kg"           # massa (GNV)


class TransactionType(Enum):
    """Natureza do lançamento no ledger."""
    PURCHASE = "purchase"       # entrada: compra de fornecedor
    DISPENSE = "dispense"       # saída: abastecimento de veículo
    ADJUSTMENT = "adjustment"   # correção manual (qualquer sentido)


class CounterpartyKind(Enum):
    """Origem/destino de um lançamento."""
    VEHICLE = "vehicle"
    VENDOR = "vendor"


class Severity(Enum):
    """Nível de alerta do estoque do tanque."""
    NORMAL = "normal"       # acima do limite de alerta
    WARNING = "warning"     # no limite de alerta do tanque (low_threshold) ou abaixo
    CRITICAL = "critical"   # até CRITICAL_FILL_PERCENT da capacidade
