"""Credit ledger: per-user balances paying for generation steps."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .db import StudioDB

logger = logging.getLogger(__name__)

BalanceCallback = Callable[[int], None]


class PricingTier(BaseModel):
    """A purchasable credit pack."""

    id: str
    name: str
    price: int = Field(..., description="Price in USD")
    credits: int = Field(..., gt=0)
    popular: bool = False


TIERS: List[PricingTier] = [
    PricingTier(id="creator", name="Creator", price=20, credits=500),
    PricingTier(id="director", name="Director", price=50, credits=1500, popular=True),
]


def _check_amount(amount: int, what: str) -> None:
    if amount < 0:
        raise ValueError(f"{what} amount must be non-negative, got {amount}")


class CreditLedger(ABC):
    """Atomic balance operations keyed by user id.

    Subscriptions are local to the ledger instance: callbacks fire for
    changes made through it.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[BalanceCallback]] = defaultdict(list)

    @abstractmethod
    async def read(self, user_id: str) -> int:
        """Return the current balance."""
        ...

    @abstractmethod
    async def debit(self, user_id: str, amount: int) -> bool:
        """Subtract ``amount`` if the balance covers it.

        Returns:
            True if debited, False if the balance was insufficient.
        """
        ...

    @abstractmethod
    async def credit(self, user_id: str, amount: int) -> int:
        """Add ``amount`` and return the new balance."""
        ...

    @abstractmethod
    def _balance(self, user_id: str) -> int:
        """Current balance, read synchronously for subscribers."""
        ...

    def subscribe(self, user_id: str, callback: BalanceCallback) -> Callable[[], None]:
        """Call ``callback`` with the balance now and after every change.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers[user_id].append(callback)
        callback(self._balance(user_id))

        def unsubscribe() -> None:
            if callback in self._subscribers[user_id]:
                self._subscribers[user_id].remove(callback)

        return unsubscribe

    def _notify(self, user_id: str) -> None:
        callbacks = list(self._subscribers.get(user_id, []))
        if not callbacks:
            return
        balance = self._balance(user_id)
        for callback in callbacks:
            callback(balance)


class InMemoryCreditLedger(CreditLedger):
    """Process-local ledger.

    Every read-modify-write happens under one ``asyncio.Lock`` so two
    concurrent debits can never both spend the same credits.
    """

    def __init__(
        self,
        balances: Optional[Dict[str, int]] = None,
        starting_credits: int = 0,
    ) -> None:
        super().__init__()
        self._balances: Dict[str, int] = dict(balances or {})
        self._starting_credits = starting_credits
        self._lock = asyncio.Lock()

    def _balance(self, user_id: str) -> int:
        return self._balances.get(user_id, self._starting_credits)

    async def read(self, user_id: str) -> int:
        async with self._lock:
            return self._balance(user_id)

    async def debit(self, user_id: str, amount: int) -> bool:
        _check_amount(amount, "Debit")
        async with self._lock:
            balance = self._balance(user_id)
            if balance < amount:
                logger.info(f"Debit of {amount} refused for {user_id} (balance {balance})")
                return False
            self._balances[user_id] = balance - amount
        logger.info(f"Debited {amount} credits from {user_id}")
        self._notify(user_id)
        return True

    async def credit(self, user_id: str, amount: int) -> int:
        _check_amount(amount, "Credit")
        async with self._lock:
            balance = self._balance(user_id) + amount
            self._balances[user_id] = balance
        logger.info(f"Credited {amount} credits to {user_id}")
        self._notify(user_id)
        return balance


class SqliteCreditLedger(CreditLedger):
    """Ledger persisted in the studio database.

    The check and the decrement of a debit are one conditional ``UPDATE``,
    so debits from any number of processes sharing the file never
    overdraw. Users are opened with ``starting_credits`` on first write.
    """

    def __init__(self, path: Union[str, Path], starting_credits: int = 0) -> None:
        super().__init__()
        self._db = StudioDB(path)
        self._starting_credits = starting_credits

    @property
    def path(self) -> Path:
        return self._db.path

    def _balance(self, user_id: str) -> int:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT balance FROM credits WHERE user_id = ?", (user_id,)
            ).fetchone()
        return row["balance"] if row else self._starting_credits

    def _open_account(self, conn, user_id: str) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO credits(user_id, balance) VALUES (?, ?)",
            (user_id, self._starting_credits),
        )

    async def read(self, user_id: str) -> int:
        return self._balance(user_id)

    async def debit(self, user_id: str, amount: int) -> bool:
        _check_amount(amount, "Debit")
        with self._db.transaction() as conn:
            self._open_account(conn, user_id)
            cursor = conn.execute(
                "UPDATE credits SET balance = balance - ? WHERE user_id = ? AND balance >= ?",
                (amount, user_id, amount),
            )
        if cursor.rowcount != 1:
            logger.info(f"Debit of {amount} refused for {user_id}")
            return False
        logger.info(f"Debited {amount} credits from {user_id}")
        self._notify(user_id)
        return True

    async def credit(self, user_id: str, amount: int) -> int:
        _check_amount(amount, "Credit")
        with self._db.transaction() as conn:
            self._open_account(conn, user_id)
            conn.execute(
                "UPDATE credits SET balance = balance + ? WHERE user_id = ?",
                (amount, user_id),
            )
            balance = conn.execute(
                "SELECT balance FROM credits WHERE user_id = ?", (user_id,)
            ).fetchone()["balance"]
        logger.info(f"Credited {amount} credits to {user_id}")
        self._notify(user_id)
        return balance


def get_tier(tier_id: str) -> PricingTier:
    for tier in TIERS:
        if tier.id == tier_id:
            return tier
    known = ", ".join(t.id for t in TIERS)
    raise ValueError(f"Unknown pricing tier: {tier_id}. Choose one of: {known}")


async def purchase_tier(ledger: CreditLedger, user_id: str, tier_id: str) -> int:
    """Add a tier's credits to the user's balance.

    Checkout happens elsewhere; this only records its effect.

    Returns:
        The new balance.
    """
    tier = get_tier(tier_id)
    balance = await ledger.credit(user_id, tier.credits)
    logger.info(f"{user_id} purchased {tier.name} (+{tier.credits} credits)")
    return balance
