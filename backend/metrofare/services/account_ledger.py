"""Wallet and card balance mutations for riders."""

from contextlib import contextmanager
import threading
from typing import Dict, Iterator, Optional, Tuple

import structlog

from metrofare.config import settings
from metrofare.exceptions import InsufficientFunds, PersistenceFailure, UnknownRider
from metrofare.models import CardState, PaymentSource, RiderAccount, Settlement
from metrofare.repository import MetroRepository

logger = structlog.get_logger(__name__)


def _money(value: float) -> float:
    return max(round(value, 2), 0.0)


class AccountLedger:
    """
    Owns every rider's balance pair; nothing else mutates wallet or card.

    Each rider has its own re-entrant lock so unrelated riders never
    contend, and a caller can hold the lock across a settlement and the
    writes that depend on it (see `locked`).
    """

    def __init__(self, repository: MetroRepository):
        self.repository = repository
        # Per-rider registries are never pruned; they grow with the rider count
        self._accounts: Dict[str, RiderAccount] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, username: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(username)
            if lock is None:
                lock = self._locks[username] = threading.RLock()
            return lock

    def _account(self, username: str) -> RiderAccount:
        # Caller holds the rider lock
        account = self._accounts.get(username)
        if account is None:
            account = self.repository.load_rider_balances(username)
            if account is None:
                raise UnknownRider(f"No rider named '{username}'")
            self._accounts[username] = account
        return account

    @contextmanager
    def locked(self, username: str) -> Iterator[RiderAccount]:
        """Hold a rider's balance lock for a multi-step transaction."""
        with self._lock_for(username):
            yield self._account(username)

    def balances(self, username: str) -> RiderAccount:
        """Snapshot of a rider's balance pair."""
        with self.locked(username) as account:
            return account.model_copy(deep=True)

    # Settlement

    @staticmethod
    def auto_recharge_amount(card: CardState, balance_after: float) -> float:
        """Single top-up owed when a card deduction leaves the card under threshold."""
        if not card.auto_recharge_enabled or balance_after >= card.min_threshold:
            return 0.0
        shortfall = card.min_threshold - balance_after
        return max(card.min_threshold * 2, shortfall)

    def _plan(self, account: RiderAccount, amount: float, prefer_card: bool,
              bonus: float) -> Settlement:
        """Work out the whole settlement before touching any balance."""
        wallet = account.wallet
        card = account.card
        top_up = 0.0

        if not prefer_card:
            if wallet < amount:
                raise InsufficientFunds(
                    f"Wallet balance {wallet:.2f} does not cover {amount:.2f}",
                    shortfall=amount - wallet
                )
            source, card_portion, wallet_portion = PaymentSource.WALLET, 0.0, amount
        elif card.balance >= amount:
            source, card_portion, wallet_portion = PaymentSource.CARD, amount, 0.0
            if amount > 0:
                top_up = self.auto_recharge_amount(card, card.balance - amount)
            if top_up > wallet:
                logger.info("auto_recharge_skipped", username=account.username,
                            needed=top_up, wallet=wallet)
                top_up = 0.0
        elif card.balance <= 0:
            raise InsufficientFunds(
                "Card has zero balance and cannot be used for this payment",
                shortfall=amount - wallet
            )
        else:
            # Split: card is emptied, so a top-up is predicted and reserved up front
            source = PaymentSource.SPLIT
            card_portion = card.balance
            wallet_portion = amount - card.balance
            top_up = self.auto_recharge_amount(card, 0.0)
            required = wallet_portion + top_up
            if wallet < required:
                raise InsufficientFunds(
                    f"Wallet balance {wallet:.2f} does not cover split remainder "
                    f"{wallet_portion:.2f} plus auto-recharge {top_up:.2f}",
                    shortfall=required - wallet
                )

        return Settlement(
            username=account.username,
            source=source,
            amount=amount,
            card_portion=card_portion,
            wallet_portion=wallet_portion,
            auto_recharge=top_up,
            loyalty_credit=bonus,
            wallet_before=wallet,
            card_before=card.balance,
            wallet_after=_money(wallet - wallet_portion - top_up + bonus),
            card_after=_money(card.balance - card_portion + top_up)
        )

    def settle(self, username: str, amount: float, prefer_card: bool,
               bonus: float = 0.0) -> Settlement:
        """
        Charge a rider for a purchase.

        Card deduction, wallet deduction, the optional auto-recharge top-up
        and the optional loyalty `bonus` credit are applied as one unit:
        either all are stored or none are.

        Args:
            username: Rider being charged
            amount: Amount owed to the system, at least 0
            prefer_card: Pay from the card first, else wallet only
            bonus: Wallet credit applied with the settlement

        Returns:
            Settlement describing where the money came from

        Raises:
            InsufficientFunds: the policy cannot cover the amount
            PersistenceFailure: storage failed; balances are unchanged
        """
        if amount < 0:
            raise ValueError(f"Settlement amount must not be negative, got {amount}")
        with self.locked(username) as account:
            settlement = self._plan(account, amount, prefer_card, bonus)
            self._store(account, settlement.wallet_after, settlement.card_after)
        logger.info(
            "settlement_applied",
            username=username,
            source=settlement.source.value,
            amount=amount,
            card_portion=settlement.card_portion,
            wallet_portion=settlement.wallet_portion,
            auto_recharge=settlement.auto_recharge,
            loyalty_credit=bonus
        )
        if settlement.auto_recharge:
            logger.info("auto_recharged", username=username, amount=settlement.auto_recharge,
                        card_balance=settlement.card_after)
        return settlement

    def revert(self, settlement: Settlement):
        """Restore the balances a settlement replaced."""
        with self.locked(settlement.username) as account:
            self._store(account, settlement.wallet_before, settlement.card_before)
        logger.warning("settlement_reverted", username=settlement.username,
                       amount=settlement.amount)

    def _store(self, account: RiderAccount, wallet: float, card_balance: float):
        """Apply new balances in memory and persist them, undoing both on failure."""
        previous: Tuple[float, float] = (account.wallet, account.card.balance)
        wallet_changed = wallet != account.wallet
        card_changed = card_balance != account.card.balance
        account.wallet = wallet
        account.card.balance = card_balance

        written = []
        try:
            if wallet_changed:
                self.repository.persist_wallet_balance(account.username, wallet)
                written.append("wallet")
            if card_changed:
                self.repository.persist_card_state(account.card)
                written.append("card")
        except PersistenceFailure:
            account.wallet, account.card.balance = previous
            self._compensate(account, written)
            raise

    def _compensate(self, account: RiderAccount, written):
        """Rewrite previously stored values for writes that already went through."""
        try:
            if "wallet" in written:
                self.repository.persist_wallet_balance(account.username, account.wallet)
            if "card" in written:
                self.repository.persist_card_state(account.card)
        except PersistenceFailure:
            # Stored state now disagrees with memory; reload on next access
            logger.exception("compensation_failed", username=account.username, written=written)
            self._accounts.pop(account.username, None)

    # Credits and settings

    def credit_wallet(self, username: str, amount: float, reason: str) -> float:
        """Unconditional wallet credit (refunds, loyalty); never touches the card."""
        if amount < 0:
            raise ValueError(f"Credit must not be negative, got {amount}")
        with self.locked(username) as account:
            self._store(account, _money(account.wallet + amount), account.card.balance)
            balance = account.wallet
        logger.info("wallet_credited", username=username, amount=amount, reason=reason,
                    wallet=balance)
        return balance

    def restore_wallet(self, username: str, balance: float):
        """Put back a wallet balance captured before a credit that must be undone."""
        with self.locked(username) as account:
            self._store(account, balance, account.card.balance)
        logger.warning("wallet_restored", username=username, wallet=balance)

    @staticmethod
    def _check_recharge(amount: float):
        if amount <= 0:
            raise ValueError("Recharge amount should be positive.")
        if amount > settings.MAX_RECHARGE_AMOUNT:
            raise ValueError(
                f"Recharge amount cannot exceed {settings.MAX_RECHARGE_AMOUNT:.2f}."
            )

    def recharge_wallet(self, username: str, amount: float) -> float:
        """Add external money to the wallet."""
        self._check_recharge(amount)
        return self.credit_wallet(username, amount, reason="recharge")

    def recharge_card(self, username: str, amount: float) -> float:
        """Add external money to the card; does not evaluate auto-recharge."""
        self._check_recharge(amount)
        with self.locked(username) as account:
            self._store(account, account.wallet, _money(account.card.balance + amount))
            balance = account.card.balance
        logger.info("card_recharged", username=username, amount=amount, card_balance=balance)
        return balance

    def configure_auto_recharge(self, username: str, enabled: bool,
                                min_threshold: Optional[float] = None) -> CardState:
        """Enable or disable auto-recharge and optionally change its threshold."""
        if min_threshold is not None and min_threshold < 0:
            raise ValueError("Minimum threshold must not be negative.")
        with self.locked(username) as account:
            previous = account.card.model_copy()
            account.card.auto_recharge_enabled = enabled
            if min_threshold is not None:
                account.card.min_threshold = min_threshold
            try:
                self.repository.persist_card_state(account.card)
            except PersistenceFailure:
                account.card = previous
                raise
            card = account.card.model_copy()
        logger.info("auto_recharge_configured", username=username, enabled=enabled,
                    min_threshold=card.min_threshold)
        return card
