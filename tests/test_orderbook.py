from __future__ import annotations

import unittest
from dataclasses import replace

from nftmarket.config import CONFIG
from nftmarket.errors import (
    NoSellOrdersFound,
    SellOrderNotFound,
    StorageOverflow,
    TokenAlreadyOnSale,
    TokenNotOnSale,
)
from nftmarket.models import SellOrder
from nftmarket.orderbook import OrderBook
from nftmarket.storage import KVStore, StorageLayout


class OrderBookTest(unittest.TestCase):
    def setUp(self) -> None:
        self.store = KVStore()
        self.layout = StorageLayout()
        self.book = OrderBook(self.store, self.layout)

    def _sale_index(self) -> dict[int, int]:
        return {int(key[2]): int(value) for key, value in self.store.items(self.layout.prefix("sale_index"))}

    def test_list_appends_and_indexes(self) -> None:
        self.assertEqual(self.book.list(7, 100), 0)
        self.assertEqual(self.book.list(3, 55), 1)
        self.assertEqual(self.book.order_count, 2)
        self.assertEqual(self.book.order_at(1), SellOrder(token_id=3, price=55))
        self.assertEqual(self.book.order_of(7), 0)

    def test_list_twice_is_rejected(self) -> None:
        self.book.list(7, 100)
        with self.assertRaises(TokenAlreadyOnSale):
            self.book.list(7, 200)
        self.assertEqual(self.book.order_count, 1)

    def test_swap_delete_relocates_last_order(self) -> None:
        for token_id in range(10, 15):
            self.book.list(token_id, token_id * 10)

        removed = self.book.delist(1)

        self.assertEqual(removed, SellOrder(token_id=11, price=110))
        self.assertEqual(self.book.order_count, 4)
        self.assertEqual(self.book.order_at(1), SellOrder(token_id=14, price=140))
        self.assertIsNone(self.book.order_at(4))
        self.assertEqual(self.book.order_of(14), 1)
        self.assertFalse(self.book.is_on_sale(11))
        self.assertEqual(self._sale_index(), {10: 0, 14: 1, 12: 2, 13: 3})

    def test_delist_last_order(self) -> None:
        self.book.list(1, 5)
        self.book.list(2, 6)
        self.book.delist(1)
        self.assertEqual(self.book.orders(), [(0, SellOrder(token_id=1, price=5))])
        self.assertEqual(self._sale_index(), {1: 0})

    def test_delist_empty_book(self) -> None:
        with self.assertRaises(NoSellOrdersFound):
            self.book.delist(0)

    def test_delist_missing_record(self) -> None:
        self.book.list(1, 5)
        self.book.list(2, 6)
        self.store.remove(self.layout.orders(1))
        with self.assertRaises(SellOrderNotFound):
            self.book.delist(0)

    def test_order_of_unlisted_token(self) -> None:
        with self.assertRaises(TokenNotOnSale):
            self.book.order_of(99)

    def test_order_count_overflow(self) -> None:
        book = OrderBook(self.store, self.layout, replace(CONFIG, order_count_bits=1))
        book.list(1, 1)
        with self.assertRaises(StorageOverflow):
            book.list(2, 1)


if __name__ == "__main__":
    unittest.main()
