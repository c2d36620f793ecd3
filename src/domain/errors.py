# src/domain/errors.py
"""
Taxonomia de erros do ledger de tanques.

Todos herdam de `LedgerError`, de modo que o chamador pode capturar a família
inteira ou um caso específico. Somente `ConcurrencyConflictError` é tratado
(re-tentado) dentro do próprio ledger; os demais sobem sem alteração.
"""
from __future__ import annotations
from typing import Optional


class LedgerError(Exception):
    """Raiz de todos os erros do domínio do ledger."""


class ValidationError(LedgerError, ValueError):
    """Entrada malformada: quantidade não positiva, tipo desconhecido, data inválida etc."""


class NotFoundError(LedgerError, LookupError):
    """Tanque, contraparte ou lançamento inexistente."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} não encontrado: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class TenantMismatchError(LedgerError):
    """Referência cruzando a fronteira entre subsidiárias (tenants)."""

    def __init__(self, tenant_id: str, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} não pertence ao tenant {tenant_id}")
        self.tenant_id = tenant_id
        self.entity = entity
        self.entity_id = entity_id


class InsufficientVolumeError(LedgerError):
    """
    A saída deixaria o tanque com saldo negativo.

    Attributes:
        requested: quantidade que se tentou retirar.
        available: saldo disponível no momento da validação.
    """

    def __init__(self, tank_id: str, requested: float, available: float) -> None:
        super().__init__(
            f"Saldo insuficiente no tanque {tank_id}: "
            f"solicitado {requested:.3f}, disponível {available:.3f}"
        )
        self.tank_id = tank_id
        self.requested = requested
        self.available = available


class CapacityExceededError(LedgerError):
    """
    A entrada ultrapassaria a capacidade física do tanque.

    Attributes:
        requested: quantidade que se tentou adicionar.
        available: espaço livre (capacidade - saldo) no momento da validação.
    """

    def __init__(self, tank_id: str, requested: float, available: float) -> None:
        super().__init__(
            f"Capacidade excedida no tanque {tank_id}: "
            f"solicitado {requested:.3f}, espaço livre {available:.3f}"
        )
        self.tank_id = tank_id
        self.requested = requested
        self.available = available


class ConcurrencyConflictError(LedgerError):
    """Orçamento de tentativas do compare-and-swap esgotado."""

    def __init__(self, tank_id: str, attempts: int, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Conflito de concorrência no tanque {tank_id} após {attempts} tentativa(s)"
        )
        self.tank_id = tank_id
        self.attempts = attempts


class LedgerTimeoutError(ConcurrencyConflictError):
    """Prazo do chamador expirou antes de uma escrita condicional ter sucesso."""

    def __init__(self, tank_id: str, attempts: int, timeout: float) -> None:
        super().__init__(
            tank_id,
            attempts,
            f"Tempo limite de {timeout:.3f}s esgotado no tanque {tank_id} "
            f"após {attempts} tentativa(s)",
        )
        self.timeout = timeout


class LedgerIntegrityError(LedgerError):
    """O replay do histórico não reproduz o saldo persistido."""
