"""Settlement collaborators — price oracle, token transfer, access control.

These sit outside the ledger core. The core only ever sees the amounts
they produce; swapping a backend requires no ledger changes.
"""

from subledger.settlement.access import AccessControl, StaticAccessControl
from subledger.settlement.oracle import (
    ChainlinkPriceFeed,
    PriceFeed,
    PriceOracle,
    PriceQuote,
    ReferencePriceOracle,
    StaticPriceOracle,
)
from subledger.settlement.transfer import (
    Erc20Transfer,
    InMemoryTransfer,
    SettlementTransfer,
    TransferRecord,
)

__all__ = [
    "AccessControl",
    "ChainlinkPriceFeed",
    "Erc20Transfer",
    "InMemoryTransfer",
    "PriceFeed",
    "PriceOracle",
    "PriceQuote",
    "ReferencePriceOracle",
    "SettlementTransfer",
    "StaticAccessControl",
    "StaticPriceOracle",
    "TransferRecord",
]
