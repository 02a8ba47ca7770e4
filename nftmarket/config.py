from dataclasses import dataclass


@dataclass(frozen=True)
class MarketConfig:
    symbol: str = "UNIT"
    # Storage prefixes; both live in the same store so one call is one transaction.
    namespace: str = "nft"
    balances_namespace: str = "balances"
    # Counter widths (u64 token ids and per-owner counts, u128 order count).
    token_id_bits: int = 64
    owner_count_bits: int = 64
    order_count_bits: int = 128
    balance_bits: int = 128
    # Accounts below this balance are reaped; payees must reach it.
    existential_deposit: int = 1
    nft_market_enabled: bool = True
    forbid_self_purchase: bool = False
    max_calls_per_block: int = 500
    max_account_id_bytes: int = 96


CONFIG = MarketConfig()
