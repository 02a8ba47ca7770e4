from __future__ import annotations

import unittest
from dataclasses import replace

from nftmarket.config import CONFIG
from nftmarket.errors import InvalidTokenID, StorageOverflow, TokenIdAlreadyMinted, TokenIndexCorrupted
from nftmarket.models import Ownership
from nftmarket.registry import TokenRegistry
from nftmarket.storage import KVStore, StorageLayout
from nftmarket.token_index import AccountTokenIndex


ALICE = "alice"
BOB = "bob"


class AccountTokenIndexTest(unittest.TestCase):
    def setUp(self) -> None:
        self.store = KVStore()
        self.layout = StorageLayout()
        self.index = AccountTokenIndex(self.store, self.layout)

    def _fill(self, owner: str, tokens: list[int]) -> None:
        for token_id in tokens:
            position = self.index.append(owner, token_id)
            self.index.record(token_id, owner, position)

    def test_append_assigns_consecutive_positions(self) -> None:
        self.assertEqual(self.index.append(ALICE, 5), 0)
        self.assertEqual(self.index.append(ALICE, 9), 1)
        self.assertEqual(self.index.count(ALICE), 2)
        self.assertEqual(self.index.tokens_of(ALICE), [5, 9])

    def test_remove_middle_relocates_last_token(self) -> None:
        self._fill(ALICE, [10, 11, 12, 13])

        self.index.remove(ALICE, 1)

        self.assertEqual(self.index.tokens_of(ALICE), [10, 13, 12])
        self.assertEqual(self.index.locate(13), Ownership(owner=ALICE, position=1))
        self.assertIsNone(self.index.token_at(ALICE, 3))

    def test_remove_last_position_just_truncates(self) -> None:
        self._fill(ALICE, [1, 2])
        self.index.remove(ALICE, 1)
        self.assertEqual(self.index.tokens_of(ALICE), [1])
        self.assertEqual(self.index.locate(1), Ownership(owner=ALICE, position=0))

    def test_remove_only_token_empties_array(self) -> None:
        self._fill(ALICE, [4])
        self.index.remove(ALICE, 0)
        self.assertEqual(self.index.count(ALICE), 0)
        self.assertEqual(self.store.items(self.layout.prefix("owner_tokens")), [])

    def test_remove_outside_array_is_rejected(self) -> None:
        with self.assertRaises(StorageOverflow):
            self.index.remove(ALICE, 0)

    def test_remove_with_missing_last_entry_reports_corruption(self) -> None:
        self._fill(ALICE, [10, 11, 12])
        self.store.remove(self.layout.owner_tokens(ALICE, 2))

        with self.assertRaises(TokenIndexCorrupted):
            self.index.remove(ALICE, 0)
        self.assertEqual(self.index.count(ALICE), 3)

    def test_append_overflow(self) -> None:
        index = AccountTokenIndex(self.store, self.layout, replace(CONFIG, owner_count_bits=2))
        for token_id in range(3):
            index.append(ALICE, token_id)
        with self.assertRaises(StorageOverflow):
            index.append(ALICE, 3)
        self.assertEqual(index.count(ALICE), 3)


class TokenRegistryTest(unittest.TestCase):
    def setUp(self) -> None:
        self.store = KVStore()
        self.registry = TokenRegistry(self.store, StorageLayout())

    def test_mint_issues_monotonic_ids(self) -> None:
        self.assertEqual(self.registry.mint(ALICE), 0)
        self.assertEqual(self.registry.mint(BOB), 1)
        self.assertEqual(self.registry.mint(ALICE), 2)
        self.assertEqual(self.registry.next_token_id, 3)
        self.assertEqual(self.registry.owner_of(2), Ownership(owner=ALICE, position=1))

    def test_owner_position_equals_prior_count(self) -> None:
        for _ in range(3):
            self.registry.mint(BOB)
        prior = self.registry.index.count(BOB)
        token_id = self.registry.mint(BOB)
        self.assertEqual(self.registry.owner_of(token_id), Ownership(owner=BOB, position=prior))

    def test_owner_of_unknown_token(self) -> None:
        with self.assertRaises(InvalidTokenID):
            self.registry.owner_of(42)

    def test_mint_rejects_already_recorded_id(self) -> None:
        self.store.put(self.registry.layout.token_owner(0), ("mallory", 0))
        with self.assertRaises(TokenIdAlreadyMinted):
            self.registry.mint(ALICE)

    def test_mint_counter_overflow(self) -> None:
        registry = TokenRegistry(self.store, StorageLayout(), replace(CONFIG, token_id_bits=2))
        for _ in range(3):
            registry.mint(ALICE)
        with self.assertRaises(StorageOverflow):
            registry.mint(ALICE)

    def test_transfer_moves_token_between_arrays(self) -> None:
        first = self.registry.mint(ALICE)
        second = self.registry.mint(ALICE)
        third = self.registry.mint(ALICE)
        self.registry.mint(BOB)

        ownership = self.registry.transfer(first, BOB)

        self.assertEqual(ownership, Ownership(owner=BOB, position=1))
        self.assertEqual(self.registry.index.tokens_of(ALICE), [third, second])
        self.assertEqual(self.registry.owner_of(third), Ownership(owner=ALICE, position=0))
        self.assertEqual(self.registry.owner_of(first), ownership)


if __name__ == "__main__":
    unittest.main()
