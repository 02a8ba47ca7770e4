from __future__ import annotations

import logging

from .config import CONFIG, MarketConfig
from .errors import BalanceOverflow, ExistentialDeposit, InsufficientBalance, InvalidCall, StorageOverflow
from .storage import Key, KVStore, checked_add


logger = logging.getLogger(__name__)


class BalanceLedger:
    """Free-balance ledger living in the same store as the marketplace.

    Sharing the store means a rejected call rolls its balance writes back
    together with everything else it staged.
    """

    def __init__(self, store: KVStore, config: MarketConfig = CONFIG):
        self.store = store
        self.config = config
        self.namespace = config.balances_namespace

    def _free_key(self, who: str) -> Key:
        return (self.namespace, "free", who)

    def _issuance_key(self) -> Key:
        return (self.namespace, "total_issuance")

    def _check_amount(self, amount: int) -> int:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidCall("Amount must be an integer")
        if amount < 0 or amount >= (1 << self.config.balance_bits):
            raise InvalidCall(f"Amount outside {self.config.balance_bits}-bit balance range")
        return amount

    def _add(self, current: int, amount: int) -> int:
        try:
            return checked_add(current, amount, self.config.balance_bits, "balance")
        except StorageOverflow as exc:
            raise BalanceOverflow(str(exc)) from exc

    def _set(self, who: str, amount: int) -> None:
        if amount == 0:
            self.store.remove(self._free_key(who))
        else:
            self.store.put(self._free_key(who), amount)

    def free_balance(self, who: str) -> int:
        return int(self.store.get(self._free_key(who), 0))

    @property
    def total_issuance(self) -> int:
        return int(self.store.get(self._issuance_key(), 0))

    def accounts(self) -> dict[str, int]:
        prefix = (self.namespace, "free")
        return {str(key[2]): int(value) for key, value in self.store.items(prefix)}

    def deposit(self, who: str, amount: int) -> int:
        amount = self._check_amount(amount)
        new_balance = self._add(self.free_balance(who), amount)
        if new_balance < self.config.existential_deposit:
            raise ExistentialDeposit(f"deposit leaves {who} below existential deposit")
        self.store.put(self._issuance_key(), self._add(self.total_issuance, amount))
        self._set(who, new_balance)
        return new_balance

    def transfer(self, payer: str, payee: str, amount: int) -> None:
        amount = self._check_amount(amount)
        payer_balance = self.free_balance(payer)
        if payer_balance < amount:
            raise InsufficientBalance(f"{payer} has {payer_balance}, needs {amount}")
        if payer == payee or amount == 0:
            return

        payee_balance = self._add(self.free_balance(payee), amount)
        if payee_balance < self.config.existential_deposit:
            raise ExistentialDeposit(f"transfer leaves {payee} below existential deposit")

        remaining = payer_balance - amount
        if remaining < self.config.existential_deposit:
            # Dust below the threshold is burned with the reaped account.
            if remaining:
                self.store.put(self._issuance_key(), self.total_issuance - remaining)
            remaining = 0
            logger.debug("Reaping account %s", payer)
        self._set(payer, remaining)
        self._set(payee, payee_balance)
