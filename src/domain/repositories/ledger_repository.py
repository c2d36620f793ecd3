# src/domain/repositories/ledger_repository.py
from __future__ import annotations
from typing import Protocol, Iterable, Optional, List

from src.domain.entities.tank import Tank
from src.domain.entities.transaction import Transaction
from src.domain.value_objects import HistoryFilters


class ILedgerRepository(Protocol):
    """
    Contrato de persistência do ledger: linhas de tanque (saldo + versão)
    e o log de lançamentos, que é somente-anexação.

    Este protocolo define **como** o ledger manipula os dados, sem impor a
    tecnologia de armazenamento. A única operação de escrita sobre o saldo é
    `commit`, que precisa ser atômica: ou o lançamento e o novo saldo aparecem
    juntos, ou nada muda.
    """

    def get_tank(self, tank_id: str) -> Optional[Tank]:
        """
        Recupera o estado persistido mais recente de um tanque.

        Returns:
            Tank se encontrado; None caso contrário.
        """
        ...

    def list_tanks(self, tenant_id: str, active_only: bool = True) -> Iterable[Tank]:
        """Lista os tanques de um tenant (somente ativos por padrão)."""
        ...

    def add_tank(self, tank: Tank) -> None:
        """
        Persiste um tanque novo (provisionamento).

        Raises:
            ValidationError: se já existir um tanque com o mesmo id.
        """
        ...

    def commit(self, txn: Transaction, expected_version: int, lock_timeout: Optional[float] = None) -> bool:
        """
        Compare-and-swap: grava `txn` e atualiza o tanque (saldo = txn.level_after,
        versão = txn.sequence, last_updated = txn.recorded_at) SOMENTE se a
        versão atual do tanque ainda for `expected_version`.

        Args:
            txn: Lançamento já validado pelo ledger.
            expected_version: Versão lida antes da validação.
            lock_timeout: Espera máxima (s) por um lock de escrita do armazenamento;
                None usa o padrão do repositório.

        Returns:
            True se a escrita condicional venceu; False se a versão mudou ou o
            lock não foi obtido no prazo (nenhuma alteração visível nos dois casos).
        """
        ...

    def replace_tank(self, tank: Tank, expected_version: int, lock_timeout: Optional[float] = None) -> bool:
        """
        Compare-and-swap de atributos do tanque sem lançamento (p.ex. desativação).
        O saldo nunca muda por aqui.
        """
        ...

    def find_by_reference(self, tank_id: str, reference_id: str) -> Optional[Transaction]:
        """Lançamento do tanque originado pelo registro externo informado, se houver."""
        ...

    def list_transactions(
        self,
        tank_id: str,
        filters: Optional[HistoryFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        after: Optional[Transaction] = None,
    ) -> List[Transaction]:
        """
        Histórico filtrado de um tanque.

        Ordenação: occurred_at DESC, recorded_at DESC (desempate final por sequence DESC).
        `after` é um cursor: só volta o que vem estritamente depois dele nessa ordem.
        """
        ...

    def count_transactions(self, tank_id: str, filters: Optional[HistoryFilters] = None) -> int:
        """Quantidade de lançamentos que passam pelos filtros."""
        ...

    def ledger(self, tank_id: str) -> List[Transaction]:
        """Todos os lançamentos do tanque em ordem de persistência (sequence ASC)."""
        ...
