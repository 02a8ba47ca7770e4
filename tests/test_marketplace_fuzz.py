from __future__ import annotations

import random
import unittest

from nftmarket.balances import BalanceLedger
from nftmarket.engine import Marketplace
from nftmarket.errors import DispatchError
from nftmarket.storage import KVStore


ACCOUNTS = ["acct-a", "acct-b", "acct-c", "acct-d"]
ENDOWMENT = 2_000


class MarketplaceFuzzTest(unittest.TestCase):
    """Random call sequences checked against a plain dictionary model."""

    def _expected_error(self, action: str, caller: str, token_id: int, model: dict) -> str | None:
        owners, listed, balances = model["owners"], model["listed"], model["balances"]
        if action == "sell":
            if token_id not in owners:
                return "InvalidTokenID"
            if owners[token_id] != caller:
                return "NotTokenOwner"
            if token_id in listed:
                return "TokenAlreadyOnSale"
        elif action == "cancel_order":
            if token_id not in owners:
                return "InvalidTokenID"
            if owners[token_id] != caller:
                return "NotTokenOwner"
            if token_id not in listed:
                return "TokenNotOnSale"
        elif action == "buy":
            if token_id not in listed:
                return "TokenNotOnSale"
            if balances[caller] < listed[token_id]:
                return "NotEnoughBalance"
        return None

    def _apply(self, market: Marketplace, action: str, caller: str, token_id: int, price: int) -> str | None:
        try:
            if action == "mint":
                market.mint(caller)
            elif action == "sell":
                market.sell(caller, token_id, price)
            elif action == "cancel_order":
                market.cancel_order(caller, token_id)
            else:
                market.buy(caller, token_id)
        except DispatchError as exc:
            return exc.code
        return None

    def _update_model(self, action: str, caller: str, token_id: int, price: int, model: dict) -> None:
        owners, listed, balances = model["owners"], model["listed"], model["balances"]
        if action == "mint":
            owners[len(owners)] = caller
        elif action == "sell":
            listed[token_id] = price
        elif action == "cancel_order":
            del listed[token_id]
        else:
            seller = owners[token_id]
            balances[caller] -= listed[token_id]
            balances[seller] += listed[token_id]
            owners[token_id] = caller
            del listed[token_id]

    def test_random_calls_match_model_and_keep_invariants(self) -> None:
        for seed in (7, 91, 2024):
            rng = random.Random(seed)
            store = KVStore()
            ledger = BalanceLedger(store)
            market = Marketplace(store, ledger=ledger)
            for account in ACCOUNTS:
                ledger.deposit(account, ENDOWMENT)
            model = {"owners": {}, "listed": {}, "balances": {account: ENDOWMENT for account in ACCOUNTS}}

            for step in range(400):
                action = rng.choices(["mint", "sell", "cancel_order", "buy"], weights=[2, 4, 2, 4])[0]
                caller = rng.choice(ACCOUNTS)
                token_id = rng.randrange(len(model["owners"]) + 2)
                price = rng.randrange(1, 400)

                expected = None if action == "mint" else self._expected_error(action, caller, token_id, model)
                before = store.snapshot()
                got = self._apply(market, action, caller, token_id, price)
                self.assertEqual(got, expected, f"seed={seed} step={step} {action} {caller} {token_id}")
                if got is None:
                    self._update_model(action, caller, token_id, price, model)
                else:
                    self.assertEqual(store.snapshot(), before)

                self.assertEqual(market.verify_integrity(), [], f"seed={seed} step={step}")

            for account in ACCOUNTS:
                owned = sorted(t for t, owner in model["owners"].items() if owner == account)
                self.assertEqual(sorted(market.tokens_of(account)), owned)
                self.assertEqual(market.balance_of(account), model["balances"][account])
            self.assertEqual(
                {row["token_id"]: row["price"] for row in market.listings()},
                model["listed"],
            )


if __name__ == "__main__":
    unittest.main()
