from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from .balances import BalanceLedger
from .config import CONFIG, MarketConfig
from .engine import EventLog, Marketplace
from .errors import DispatchError, InvalidCall, StorageError
from .models import ACTIONS, Call, CallResult, Event
from .storage import KVStore


logger = logging.getLogger(__name__)


class Runtime:
    """Sequential host for marketplace calls, persisted under ``data_dir``.

    Calls run one at a time; each is its own transaction. A block is an
    ordered batch of calls whose individual failures do not affect the
    calls around them.
    """

    def __init__(self, data_dir: str | Path, config: MarketConfig = CONFIG):
        self.config = config
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.state_path = self.data_dir / "market_state.json"

        self.height = 0
        self.last_block: list[CallResult] = []
        self._bind(KVStore())

    def _bind(self, store: KVStore) -> None:
        self.store = store
        self.events = EventLog()
        self.ledger = BalanceLedger(store, self.config)
        self.market = Marketplace(store, ledger=self.ledger, config=self.config, event_sink=self.events)

    def exists(self) -> bool:
        return self.state_path.exists()

    def load(self) -> None:
        if not self.state_path.exists():
            raise FileNotFoundError(f"State file not found: {self.state_path}")
        try:
            with self.state_path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except ValueError as exc:
            raise StorageError(f"State file is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError("State file must contain a JSON object")

        raw_config = data.get("config", {})
        if isinstance(raw_config, dict) and raw_config.get("namespace", self.config.namespace) != self.config.namespace:
            raise StorageError("State namespace does not match runtime config")
        self.height = int(data.get("height", 0))
        self.last_block = []
        self._bind(KVStore.from_snapshot(data.get("storage")))
        logger.debug("Loaded runtime state at height %d from %s", self.height, self.state_path)

    def save(self) -> None:
        data = {
            "config": {
                "symbol": self.config.symbol,
                "namespace": self.config.namespace,
                "balances_namespace": self.config.balances_namespace,
                "token_id_bits": self.config.token_id_bits,
                "owner_count_bits": self.config.owner_count_bits,
                "order_count_bits": self.config.order_count_bits,
                "balance_bits": self.config.balance_bits,
                "existential_deposit": self.config.existential_deposit,
            },
            "height": self.height,
            "storage": self.store.snapshot(),
        }
        temp_path = self.state_path.with_suffix(".json.tmp")
        with temp_path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, self.state_path)

    def initialize(self, endowments: dict[str, int] | None = None) -> None:
        self.height = 0
        self.last_block = []
        self._bind(KVStore())
        with self.store.transaction():
            for who, amount in sorted((endowments or {}).items()):
                self.ledger.deposit(who, int(amount))
        self.save()

    def fund(self, who: str, amount: int) -> int:
        with self.store.transaction():
            balance = self.ledger.deposit(who, amount)
        self.save()
        return balance

    def normalize_call(self, payload: Any, caller: str | None = None) -> Call:
        if isinstance(payload, Call):
            return payload
        if not isinstance(payload, dict):
            raise InvalidCall("Call must be a JSON object")
        who = payload.get("caller", caller)
        if not isinstance(who, str) or not who:
            raise InvalidCall("Call is missing caller")
        action = str(payload.get("action", "")).strip().lower()
        if action == "cancel":
            action = "cancel_order"
        if action not in ACTIONS:
            raise InvalidCall(f"Unsupported action '{action}'")

        token_id = None
        price = None
        if action != "mint":
            token_id = self._int_field(payload, "token_id")
        if action == "sell":
            price = self._int_field(payload, "price")
        return Call(caller=who, action=action, token_id=token_id, price=price)

    @staticmethod
    def _int_field(payload: dict[str, Any], name: str) -> int:
        raw = payload.get(name)
        if isinstance(raw, bool):
            raise InvalidCall(f"{name} must be an integer")
        try:
            value = int(raw)
        except (TypeError, ValueError, OverflowError) as exc:
            raise InvalidCall(f"{name} must be an integer") from exc
        if isinstance(raw, float) and raw != value:
            raise InvalidCall(f"{name} must be an integer")
        return value

    def _dispatch(self, call: Call) -> Event:
        if call.action == "mint":
            return self.market.mint(call.caller)
        if call.action == "sell":
            return self.market.sell(call.caller, call.token_id, call.price)
        if call.action == "cancel_order":
            return self.market.cancel_order(call.caller, call.token_id)
        if call.action == "buy":
            return self.market.buy(call.caller, call.token_id)
        raise InvalidCall(f"Unsupported action '{call.action}'")

    def apply_call(self, payload: Any, index: int = 0) -> CallResult:
        try:
            call = self.normalize_call(payload)
        except InvalidCall as exc:
            raw = payload if isinstance(payload, dict) else {}
            call = Call(caller=str(raw.get("caller", "")), action=str(raw.get("action", "")))
            return CallResult(index=index, call=call, ok=False, error=exc.to_dict())

        try:
            with self.store.transaction():
                event = self._dispatch(call)
        except DispatchError as exc:
            logger.info("Rejected %s from %s: %s", call.action, call.caller, exc.code)
            return CallResult(index=index, call=call, ok=False, error=exc.to_dict())
        return CallResult(index=index, call=call, ok=True, event=event)

    def apply_block(self, calls: list[Any], save: bool = True) -> list[CallResult]:
        if len(calls) > self.config.max_calls_per_block:
            raise InvalidCall(f"Block exceeds {self.config.max_calls_per_block} calls")
        results = [self.apply_call(payload, index=i) for i, payload in enumerate(calls)]
        self.height += 1
        self.last_block = results
        accepted = sum(1 for result in results if result.ok)
        logger.info("Block %d applied: %d accepted, %d rejected", self.height, accepted, len(results) - accepted)
        if save:
            self.save()
        return results

    def nft_state(self, token_id: int) -> dict[str, Any]:
        if not self.market.registry.exists(token_id):
            return {"token_id": token_id, "exists": False, "token": None}
        ownership = self.market.owner_of(token_id)
        listing = self.market.sell_order(token_id)
        return {
            "token_id": token_id,
            "exists": True,
            "token": {
                "owner": ownership.owner,
                "position": ownership.position,
                "order_id": listing[0] if listing else None,
                "price": listing[1].price if listing else None,
            },
        }

    def status(self) -> dict[str, Any]:
        summary = self.market.status()
        summary.update(
            {
                "symbol": self.config.symbol,
                "height": self.height,
                "accounts": len(self.ledger.accounts()),
                "storage_entries": len(self.store),
            }
        )
        return summary
