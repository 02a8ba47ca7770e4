from __future__ import annotations

from .config import CONFIG, MarketConfig
from .errors import InvalidTokenID, TokenIdAlreadyMinted
from .models import Ownership
from .storage import KVStore, StorageLayout, checked_add
from .token_index import AccountTokenIndex


class TokenRegistry:
    def __init__(
        self,
        store: KVStore,
        layout: StorageLayout,
        config: MarketConfig = CONFIG,
        index: AccountTokenIndex | None = None,
    ):
        self.store = store
        self.layout = layout
        self.config = config
        self.index = index if index is not None else AccountTokenIndex(store, layout, config)

    @property
    def next_token_id(self) -> int:
        return int(self.store.get(self.layout.next_token_id(), 0))

    @property
    def total_minted(self) -> int:
        # Ids are issued densely from zero and never burned.
        return self.next_token_id

    def exists(self, token_id: int) -> bool:
        return self.store.contains(self.layout.token_owner(token_id))

    def mint(self, owner: str) -> int:
        token_id = self.next_token_id
        self.store.put(
            self.layout.next_token_id(),
            checked_add(token_id, 1, self.config.token_id_bits, "next_token_id"),
        )
        if self.exists(token_id):
            raise TokenIdAlreadyMinted(f"token {token_id} is already minted")
        position = self.index.append(owner, token_id)
        self.index.record(token_id, owner, position)
        return token_id

    def owner_of(self, token_id: int) -> Ownership:
        ownership = self.index.locate(token_id)
        if ownership is None:
            raise InvalidTokenID(f"token {token_id} does not exist")
        return ownership

    def transfer(self, token_id: int, new_owner: str) -> Ownership:
        current = self.owner_of(token_id)
        self.index.remove(current.owner, current.position)
        position = self.index.append(new_owner, token_id)
        return self.index.record(token_id, new_owner, position)
