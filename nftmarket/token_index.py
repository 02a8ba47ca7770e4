from __future__ import annotations

from .config import CONFIG, MarketConfig
from .errors import StorageOverflow, TokenIndexCorrupted
from .models import Ownership
from .storage import KVStore, StorageLayout, checked_add


class AccountTokenIndex:
    """Per-account compact token arrays plus the token -> (owner, position) map.

    Positions ``0 .. count(owner)`` are always occupied. Deleting any slot
    moves the owner's last token into the hole, so removal never scans.
    """

    def __init__(self, store: KVStore, layout: StorageLayout, config: MarketConfig = CONFIG):
        self.store = store
        self.layout = layout
        self.config = config

    def count(self, owner: str) -> int:
        return int(self.store.get(self.layout.owner_count(owner), 0))

    def token_at(self, owner: str, position: int) -> int | None:
        value = self.store.get(self.layout.owner_tokens(owner, position))
        return None if value is None else int(value)

    def tokens_of(self, owner: str) -> list[int]:
        tokens: list[int] = []
        for position in range(self.count(owner)):
            token_id = self.token_at(owner, position)
            if token_id is not None:
                tokens.append(token_id)
        return tokens

    def locate(self, token_id: int) -> Ownership | None:
        value = self.store.get(self.layout.token_owner(token_id))
        if value is None:
            return None
        return Ownership.from_value(value)

    def record(self, token_id: int, owner: str, position: int) -> Ownership:
        ownership = Ownership(owner=owner, position=position)
        self.store.put(self.layout.token_owner(token_id), ownership.to_value())
        return ownership

    def append(self, owner: str, token_id: int) -> int:
        position = self.count(owner)
        new_count = checked_add(position, 1, self.config.owner_count_bits, "owner token count")
        self.store.put(self.layout.owner_tokens(owner, position), token_id)
        self.store.put(self.layout.owner_count(owner), new_count)
        return position

    def remove(self, owner: str, position: int) -> None:
        count = self.count(owner)
        if count == 0 or position >= count:
            raise StorageOverflow(f"token array underflow: position {position}, size {count}")
        last = count - 1
        if position != last:
            moved = self.token_at(owner, last)
            if moved is None:
                raise TokenIndexCorrupted(f"token array of {owner} has no entry at position {last}")
            self.store.put(self.layout.owner_tokens(owner, position), moved)
            self.record(moved, owner, position)
        self.store.remove(self.layout.owner_tokens(owner, last))
        if last == 0:
            self.store.remove(self.layout.owner_count(owner))
        else:
            self.store.put(self.layout.owner_count(owner), last)
