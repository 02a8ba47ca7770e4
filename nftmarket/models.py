from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union


ACTIONS = ("mint", "sell", "cancel_order", "buy")


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class Ownership:
    owner: str
    position: int

    def to_dict(self) -> dict[str, Any]:
        return {"owner": self.owner, "position": self.position}

    @classmethod
    def from_value(cls, value: Any) -> "Ownership":
        owner, position = value
        return cls(owner=str(owner), position=int(position))

    def to_value(self) -> tuple[str, int]:
        return (self.owner, self.position)


@dataclass(frozen=True)
class SellOrder:
    token_id: int
    price: int

    def to_dict(self) -> dict[str, Any]:
        return {"token_id": self.token_id, "price": self.price}

    @classmethod
    def from_value(cls, value: Any) -> "SellOrder":
        token_id, price = value
        return cls(token_id=int(token_id), price=int(price))

    def to_value(self) -> tuple[int, int]:
        return (self.token_id, self.price)


@dataclass(frozen=True)
class NFTMinted:
    token_id: int
    owner: str

    name = "NFTMinted"

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "token_id": self.token_id, "owner": self.owner}


@dataclass(frozen=True)
class SellOrderCreated:
    token_id: int
    price: int

    name = "SellOrderCreated"

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "token_id": self.token_id, "price": self.price}


@dataclass(frozen=True)
class CancelledOrder:
    token_id: int

    name = "CancelledOrder"

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "token_id": self.token_id}


@dataclass(frozen=True)
class NFTSold:
    buyer: str
    seller: str
    price: int

    name = "NFTSold"

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "buyer": self.buyer, "seller": self.seller, "price": self.price}


Event = Union[NFTMinted, SellOrderCreated, CancelledOrder, NFTSold]


@dataclass(frozen=True)
class Call:
    caller: str
    action: str
    token_id: int | None = None
    price: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"caller": self.caller, "action": self.action}
        if self.token_id is not None:
            data["token_id"] = self.token_id
        if self.price is not None:
            data["price"] = self.price
        return data


@dataclass
class CallResult:
    index: int
    call: Call
    ok: bool
    event: Event | None = None
    error: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "call": self.call.to_dict(),
            "ok": self.ok,
            "event": self.event.to_dict() if self.event is not None else None,
            "error": dict(self.error) if self.error else None,
        }
