from __future__ import annotations

from .config import CONFIG, MarketConfig
from .errors import NoSellOrdersFound, SellOrderNotFound, TokenAlreadyOnSale, TokenNotOnSale
from .models import SellOrder
from .storage import KVStore, StorageLayout, checked_add


class OrderBook:
    """Global compact array of sell orders with a token -> order_id sale index.

    ``sale_index[t] == i`` holds exactly when ``orders[i].token_id == t``.
    Removal swaps the last order into the freed slot and truncates.
    """

    def __init__(self, store: KVStore, layout: StorageLayout, config: MarketConfig = CONFIG):
        self.store = store
        self.layout = layout
        self.config = config

    @property
    def order_count(self) -> int:
        return int(self.store.get(self.layout.order_count(), 0))

    def order_at(self, order_id: int) -> SellOrder | None:
        value = self.store.get(self.layout.orders(order_id))
        if value is None:
            return None
        return SellOrder.from_value(value)

    def orders(self) -> list[tuple[int, SellOrder]]:
        rows: list[tuple[int, SellOrder]] = []
        for order_id in range(self.order_count):
            order = self.order_at(order_id)
            if order is not None:
                rows.append((order_id, order))
        return rows

    def is_on_sale(self, token_id: int) -> bool:
        return self.store.contains(self.layout.sale_index(token_id))

    def order_of(self, token_id: int) -> int:
        value = self.store.get(self.layout.sale_index(token_id))
        if value is None:
            raise TokenNotOnSale(f"token {token_id} is not on sale")
        return int(value)

    def list(self, token_id: int, price: int) -> int:
        if self.is_on_sale(token_id):
            raise TokenAlreadyOnSale(f"token {token_id} is already on sale")
        order_id = self.order_count
        self.store.put(
            self.layout.order_count(),
            checked_add(order_id, 1, self.config.order_count_bits, "order_count"),
        )
        self.store.put(self.layout.orders(order_id), SellOrder(token_id=token_id, price=price).to_value())
        self.store.put(self.layout.sale_index(token_id), order_id)
        return order_id

    def delist(self, order_id: int) -> SellOrder:
        count = self.order_count
        if count == 0:
            raise NoSellOrdersFound("order book is empty")
        removed = self.order_at(order_id) if order_id < count else None
        if removed is None:
            raise SellOrderNotFound(f"no sell order at position {order_id}")

        last = count - 1
        if order_id != last:
            moved = self.order_at(last)
            if moved is None:
                raise SellOrderNotFound(f"no sell order at last position {last}")
            self.store.put(self.layout.orders(order_id), moved.to_value())
            self.store.put(self.layout.sale_index(moved.token_id), order_id)

        self.store.remove(self.layout.orders(last))
        self.store.put(self.layout.order_count(), last)
        self.store.remove(self.layout.sale_index(removed.token_id))
        return removed
