from __future__ import annotations

import logging
from typing import Any, Callable

from .balances import BalanceLedger
from .config import CONFIG, MarketConfig
from .errors import (
    BuyerIsSeller,
    InvalidCall,
    MarketDisabled,
    NotEnoughBalance,
    NotTokenOwner,
    SellOrderNotFound,
)
from .models import CancelledOrder, Event, NFTMinted, NFTSold, Ownership, SellOrder, SellOrderCreated
from .orderbook import OrderBook
from .registry import TokenRegistry
from .storage import KVStore, StorageLayout
from .token_index import AccountTokenIndex


logger = logging.getLogger(__name__)


class EventLog:
    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def drain(self) -> list[Event]:
        events, self.events = self.events, []
        return events


class Marketplace:
    """Mint, Sell, CancelOrder and Buy over a shared key-value store.

    Every operation stages its writes in a store transaction, so a rejected
    call leaves registry, order book and balances exactly as they were.
    Events reach the sink only after the transaction commits.
    """

    def __init__(
        self,
        store: KVStore,
        ledger: BalanceLedger | None = None,
        config: MarketConfig = CONFIG,
        event_sink: Callable[[Event], None] | None = None,
    ):
        self.store = store
        self.config = config
        self.layout = StorageLayout(config.namespace)
        self.index = AccountTokenIndex(store, self.layout, config)
        self.registry = TokenRegistry(store, self.layout, config, index=self.index)
        self.orderbook = OrderBook(store, self.layout, config)
        self.ledger = ledger if ledger is not None else BalanceLedger(store, config)
        self.event_sink = event_sink if event_sink is not None else EventLog()

    def _ensure_enabled(self) -> None:
        if not self.config.nft_market_enabled:
            raise MarketDisabled("NFT market is disabled by config")

    def _check_caller(self, caller: Any) -> str:
        # Authenticated identities are opaque; never normalized.
        if not isinstance(caller, str) or not caller:
            raise InvalidCall("Caller identity is required")
        if len(caller.encode("utf-8")) > self.config.max_account_id_bytes:
            raise InvalidCall("Caller identity exceeds size limit")
        return caller

    @staticmethod
    def _check_uint(value: Any, bits: int, field_name: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidCall(f"{field_name} must be an integer")
        if value < 0 or value >= (1 << bits):
            raise InvalidCall(f"{field_name} outside {bits}-bit range")
        return value

    def _check_token_id(self, token_id: Any) -> int:
        return self._check_uint(token_id, self.config.token_id_bits, "token_id")

    def _check_price(self, price: Any) -> int:
        return self._check_uint(price, self.config.balance_bits, "price")

    def _emit(self, event: Event) -> Event:
        logger.info("%s %s", event.name, event.to_dict())
        self.event_sink(event)
        return event

    def _require_owner(self, token_id: int, caller: str) -> Ownership:
        ownership = self.registry.owner_of(token_id)
        if ownership.owner != caller:
            raise NotTokenOwner(f"{caller} does not own token {token_id}")
        return ownership

    def mint(self, caller: str) -> NFTMinted:
        self._ensure_enabled()
        owner = self._check_caller(caller)
        with self.store.transaction():
            token_id = self.registry.mint(owner)
        return self._emit(NFTMinted(token_id=token_id, owner=owner))

    def sell(self, caller: str, token_id: int, price: int) -> SellOrderCreated:
        self._ensure_enabled()
        who = self._check_caller(caller)
        token_id = self._check_token_id(token_id)
        price = self._check_price(price)
        with self.store.transaction():
            self._require_owner(token_id, who)
            self.orderbook.list(token_id, price)
        return self._emit(SellOrderCreated(token_id=token_id, price=price))

    def cancel_order(self, caller: str, token_id: int) -> CancelledOrder:
        self._ensure_enabled()
        who = self._check_caller(caller)
        token_id = self._check_token_id(token_id)
        with self.store.transaction():
            self._require_owner(token_id, who)
            order_id = self.orderbook.order_of(token_id)
            self.orderbook.delist(order_id)
        return self._emit(CancelledOrder(token_id=token_id))

    def buy(self, caller: str, token_id: int) -> NFTSold:
        self._ensure_enabled()
        buyer = self._check_caller(caller)
        token_id = self._check_token_id(token_id)
        with self.store.transaction():
            order_id = self.orderbook.order_of(token_id)
            order = self.orderbook.order_at(order_id)
            if order is None or order.token_id != token_id:
                raise SellOrderNotFound(f"sale index of token {token_id} points at a missing order")
            seller = self.registry.owner_of(token_id).owner
            if seller == buyer and self.config.forbid_self_purchase:
                raise BuyerIsSeller("Listing seller cannot buy own NFT")
            available = self.ledger.free_balance(buyer)
            if available < order.price:
                raise NotEnoughBalance(f"{buyer} has {available}, order price is {order.price}")

            # Funds move first; registry writes only follow a successful transfer.
            self.ledger.transfer(buyer, seller, order.price)
            self.orderbook.delist(order_id)
            self.registry.transfer(token_id, buyer)
        return self._emit(NFTSold(buyer=buyer, seller=seller, price=order.price))

    def owner_of(self, token_id: int) -> Ownership:
        return self.registry.owner_of(self._check_token_id(token_id))

    def tokens_of(self, owner: str) -> list[int]:
        return self.index.tokens_of(owner)

    def token_count(self, owner: str) -> int:
        return self.index.count(owner)

    def order_of(self, token_id: int) -> int:
        return self.orderbook.order_of(self._check_token_id(token_id))

    def sell_order(self, token_id: int) -> tuple[int, SellOrder] | None:
        if not self.orderbook.is_on_sale(token_id):
            return None
        order_id = self.orderbook.order_of(token_id)
        order = self.orderbook.order_at(order_id)
        if order is None:
            return None
        return order_id, order

    def listings(self) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for order_id, order in self.orderbook.orders():
            ownership = self.index.locate(order.token_id)
            rows.append(
                {
                    "order_id": order_id,
                    "token_id": order.token_id,
                    "price": order.price,
                    "seller": ownership.owner if ownership is not None else None,
                }
            )
        return rows

    def balance_of(self, who: str) -> int:
        return self.ledger.free_balance(who)

    def status(self) -> dict[str, Any]:
        owners = self.store.items(self.layout.prefix("owner_count"))
        return {
            "nft_market_enabled": self.config.nft_market_enabled,
            "next_token_id": self.registry.next_token_id,
            "token_count": self.registry.total_minted,
            "owner_count": len(owners),
            "order_count": self.orderbook.order_count,
            "total_issuance": self.ledger.total_issuance,
        }

    def verify_integrity(self) -> list[str]:
        """Audit the compact arrays and their reverse indexes; returns the problems found."""
        problems: list[str] = []
        layout = self.layout
        next_token_id = self.registry.next_token_id

        owned = 0
        for key, count in self.store.items(layout.prefix("owner_count")):
            owner = key[2]
            count = int(count)
            owned += count
            for position in range(count):
                token_id = self.index.token_at(owner, position)
                if token_id is None:
                    problems.append(f"gap in token array of {owner} at position {position}")
                    continue
                ownership = self.index.locate(token_id)
                if ownership != Ownership(owner=owner, position=position):
                    problems.append(f"token {token_id} record {ownership} disagrees with {owner}[{position}]")
        for key, _value in self.store.items(layout.prefix("owner_tokens")):
            owner, position = key[2], int(key[3])
            if position >= self.index.count(owner):
                problems.append(f"token array of {owner} has stale entry at position {position}")

        records = self.store.items(layout.prefix("token_owner"))
        for key, value in records:
            token_id = int(key[2])
            if token_id >= next_token_id:
                problems.append(f"token {token_id} was never issued")
            ownership = Ownership.from_value(value)
            if self.index.token_at(ownership.owner, ownership.position) != token_id:
                problems.append(f"token {token_id} missing from {ownership.owner}[{ownership.position}]")
        if len(records) != owned or len(records) != next_token_id:
            problems.append(
                f"token totals disagree: issued={next_token_id} records={len(records)} owned={owned}"
            )

        order_count = self.orderbook.order_count
        for key, _value in self.store.items(layout.prefix("orders")):
            if int(key[2]) >= order_count:
                problems.append(f"order book has stale entry at position {key[2]}")
        for order_id in range(order_count):
            order = self.orderbook.order_at(order_id)
            if order is None:
                problems.append(f"gap in order book at position {order_id}")
                continue
            if self.store.get(layout.sale_index(order.token_id)) != order_id:
                problems.append(f"sale index of token {order.token_id} does not point at order {order_id}")
            if not self.registry.exists(order.token_id):
                problems.append(f"order {order_id} sells unknown token {order.token_id}")
        for key, value in self.store.items(layout.prefix("sale_index")):
            order = self.orderbook.order_at(int(value))
            if order is None or order.token_id != int(key[2]):
                problems.append(f"sale index of token {key[2]} points at order {value} for another token")
        return problems
