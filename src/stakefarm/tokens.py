"""
stakefarm/tokens.py

Fungible-token collaborators used by the farming engine.

The engine never touches balances itself: it pulls principal in and pays
rewards out through a TokenLedger bound to the engine's holding account.
InMemoryToken is the reference implementation used by the CLI and tests.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .config import ENGINE_ACCOUNT
from .errors import TokenTransferError, UnknownTokenError

logger = logging.getLogger("stakefarm.tokens")


# ============================================================================
# TOKEN INTERFACE
# ============================================================================

class TokenLedger(ABC):
    """Abstract token as seen from the engine's holding account."""

    engine_account: str = ENGINE_ACCOUNT

    @abstractmethod
    def transfer_in(self, sender: str, amount: int) -> None:
        """
        Move amount from sender to the engine. Raise on failure.

        Also used to take back payouts of a batch that failed part way.
        """
        pass

    @abstractmethod
    def transfer_out(self, recipient: str, amount: int) -> None:
        """Move amount from the engine to recipient. Raise on failure."""
        pass

    @abstractmethod
    def balance_of(self, holder: str) -> int:
        """Balance of an arbitrary holder."""
        pass

    @abstractmethod
    def decimals(self) -> int:
        pass

    def engine_balance(self) -> int:
        """Balance held by the engine."""
        return self.balance_of(self.engine_account)


class InMemoryToken(TokenLedger):
    """
    Dictionary-backed token.

    Usage:
        token = InMemoryToken("FARM", decimals=18)
        token.mint("0xalice", 10_000 * 10 ** 18)
        token.transfer_in("0xalice", 500 * 10 ** 18)   # alice -> engine
    """

    def __init__(
        self,
        symbol: str,
        decimals: int = 18,
        engine_account: str = ENGINE_ACCOUNT,
    ):
        self.symbol = symbol
        self._decimals = decimals
        self.engine_account = engine_account
        self._balances: Dict[str, int] = {}
        self.total_supply = 0

    def __repr__(self) -> str:
        return f"InMemoryToken({self.symbol!r})"

    def decimals(self) -> int:
        return self._decimals

    def balance_of(self, holder: str) -> int:
        return self._balances.get(holder, 0)

    def mint(self, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Cannot mint a negative amount")
        self._balances[recipient] = self.balance_of(recipient) + amount
        self.total_supply += amount

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Cannot transfer a negative amount")
        balance = self.balance_of(sender)
        if balance < amount:
            raise TokenTransferError()
        self._balances[sender] = balance - amount
        self._balances[recipient] = self.balance_of(recipient) + amount
        logger.debug(f"{self.symbol}: {sender[:10]} -> {recipient[:10]} {amount}")

    def transfer_in(self, sender: str, amount: int) -> None:
        self.transfer(sender, self.engine_account, amount)

    def transfer_out(self, recipient: str, amount: int) -> None:
        self.transfer(self.engine_account, recipient, amount)


# ============================================================================
# TOKEN REGISTRY
# ============================================================================

class TokenRegistry:
    """Maps token ids (as used in pool configuration) to TokenLedgers."""

    def __init__(self, tokens: Optional[Dict[str, TokenLedger]] = None):
        self._tokens: Dict[str, TokenLedger] = dict(tokens or {})

    def register(self, token_id: str, token: TokenLedger) -> None:
        self._tokens[token_id] = token

    def get(self, token_id: str) -> TokenLedger:
        token = self._tokens.get(token_id)
        if token is None:
            raise UnknownTokenError(f"Token is not registered: {token_id}")
        return token

    def __contains__(self, token_id: str) -> bool:
        return token_id in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)
