# src/domain/repositories/counterparty_repository.py
from __future__ import annotations
from typing import Protocol, Optional

from src.domain.entities.counterparty import Counterparty


class ICounterpartyRepository(Protocol):
    """
    Contrato de consulta de veículos e fornecedores.

    O cadastro (CRUD) fica fora do ledger; só a leitura por id é necessária
    para validar o tenant de uma contraparte.
    """

    def get(self, counterparty_id: str) -> Optional[Counterparty]:
        """
        Recupera uma contraparte pelo identificador.

        Returns:
            Optional[Counterparty]: instância se encontrada; None caso contrário.
        """
        ...
