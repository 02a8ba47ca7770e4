from __future__ import annotations


class DispatchError(Exception):
    """Rejects the current call; the host discards every write it staged."""

    code = "DispatchError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": str(self)}


class StorageOverflow(DispatchError):
    code = "StorageOverflow"


class TokenIdAlreadyMinted(DispatchError):
    code = "TokenIdAlreadyMinted"


class InvalidTokenID(DispatchError):
    code = "InvalidTokenID"


class NotTokenOwner(DispatchError):
    code = "NotTokenOwner"


class TokenAlreadyOnSale(DispatchError):
    code = "TokenAlreadyOnSale"


class TokenNotOnSale(DispatchError):
    code = "TokenNotOnSale"


class SellOrderNotFound(DispatchError):
    # Order book reports a position with no backing record.
    code = "SellOrderNotFound"


class TokenIndexCorrupted(DispatchError):
    # Owner token array reports a position with no backing entry.
    code = "TokenIndexCorrupted"


class NoSellOrdersFound(DispatchError):
    code = "NoSellOrdersFound"


class NotEnoughBalance(DispatchError):
    code = "NotEnoughBalance"


class BuyerIsSeller(DispatchError):
    code = "BuyerIsSeller"


class MarketDisabled(DispatchError):
    code = "MarketDisabled"


class InvalidCall(DispatchError):
    code = "InvalidCall"


class TransferError(DispatchError):
    code = "TransferError"


class InsufficientBalance(TransferError):
    code = "InsufficientBalance"


class ExistentialDeposit(TransferError):
    code = "ExistentialDeposit"


class BalanceOverflow(TransferError):
    code = "BalanceOverflow"


class StorageError(Exception):
    pass
