"""Price oracle — minimum fee and deposit in settlement-token units.

Minimums are set in a reference currency (USD) and converted into
settlement units at the current token price:

    units = usd_amount / token_price_usd

rounded up to the token's smallest unit, so a minimum is never
under-charged by rounding. A price that is zero, negative, or older than
the configured staleness bound is refused with PriceUnavailable; the
operation that asked for the minimum fails with it.

The ledger core never calls an oracle. The service layer reads the
minimum and passes it into the ledger operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_UP, Decimal
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from subledger.config import LedgerConfig
from subledger.errors import PriceUnavailable

# Minimal Chainlink AggregatorV3Interface ABI
AGGREGATOR_V3_ABI = [
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "latestRoundData",
        "outputs": [
            {"internalType": "uint80", "name": "roundId", "type": "uint80"},
            {"internalType": "int256", "name": "answer", "type": "int256"},
            {"internalType": "uint256", "name": "startedAt", "type": "uint256"},
            {"internalType": "uint256", "name": "updatedAt", "type": "uint256"},
            {"internalType": "uint80", "name": "answeredInRound", "type": "uint80"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
]


@dataclass(frozen=True)
class PriceQuote:
    """Token price in the reference currency at a point in time."""
    price: Decimal
    updated_utc: datetime


@runtime_checkable
class PriceFeed(Protocol):
    """Source of the latest token price."""

    def latest_price(self) -> PriceQuote:
        ...


@runtime_checkable
class PriceOracle(Protocol):
    """Contract consumed by the service layer for minimum amounts.

    Both methods return a positive amount in settlement units, or raise
    PriceUnavailable.
    """

    def minimum_fee(self) -> Decimal:
        ...

    def minimum_deposit(self) -> Decimal:
        ...


class StaticPriceOracle:
    """Fixed minimums, already expressed in settlement units."""

    def __init__(self, minimum_fee: Decimal, minimum_deposit: Decimal) -> None:
        if minimum_fee <= Decimal("0") or minimum_deposit <= Decimal("0"):
            raise PriceUnavailable("static minimums must be positive")
        self._minimum_fee = minimum_fee
        self._minimum_deposit = minimum_deposit

    def minimum_fee(self) -> Decimal:
        return self._minimum_fee

    def minimum_deposit(self) -> Decimal:
        return self._minimum_deposit


class ReferencePriceOracle:
    """Converts reference-currency minimums at the feed's latest price.

    Usage:
        oracle = ReferencePriceOracle.from_config(feed, LedgerConfig.from_file())
        oracle.minimum_fee()   # e.g. Decimal("0.000666666666666667")
    """

    def __init__(
        self,
        feed: PriceFeed,
        minimum_fee_usd: Decimal,
        minimum_deposit_usd: Decimal,
        staleness: timedelta,
        token_decimals: int,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._feed = feed
        self._minimum_fee_usd = minimum_fee_usd
        self._minimum_deposit_usd = minimum_deposit_usd
        self._staleness = staleness
        self._unit = Decimal(1).scaleb(-token_decimals)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(
        cls,
        feed: PriceFeed,
        config: LedgerConfig,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> ReferencePriceOracle:
        return cls(
            feed=feed,
            minimum_fee_usd=config.minimum_fee_usd,
            minimum_deposit_usd=config.minimum_deposit_usd,
            staleness=config.price_staleness,
            token_decimals=config.token_decimals,
            clock=clock,
        )

    def fresh_price(self) -> Decimal:
        """Latest price, or PriceUnavailable if it cannot be trusted."""
        quote = self._feed.latest_price()
        if quote.price <= Decimal("0"):
            raise PriceUnavailable(f"non-positive price {quote.price}")
        age = self._clock() - quote.updated_utc
        if age > self._staleness:
            raise PriceUnavailable(
                f"price last updated {quote.updated_utc.isoformat()} "
                f"is older than {self._staleness}"
            )
        return quote.price

    def to_settlement_units(self, usd_amount: Decimal) -> Decimal:
        units = (usd_amount / self.fresh_price()).quantize(
            self._unit, rounding=ROUND_UP,
        )
        if units <= Decimal("0"):
            raise PriceUnavailable(f"converted amount {units} is not positive")
        return units

    def minimum_fee(self) -> Decimal:
        return self.to_settlement_units(self._minimum_fee_usd)

    def minimum_deposit(self) -> Decimal:
        return self.to_settlement_units(self._minimum_deposit_usd)


class ChainlinkPriceFeed:
    """Reads a Chainlink AggregatorV3 price feed.

    The contract object only needs the web3 ``functions`` interface, so
    tests can pass a stand-in; connect() builds the real one.
    """

    def __init__(self, contract: Any) -> None:
        self._contract = contract
        self._decimals: Optional[int] = None

    @classmethod
    def connect(cls, rpc_url: str, feed_address: str) -> ChainlinkPriceFeed:
        from web3 import Web3, HTTPProvider

        w3 = Web3(HTTPProvider(rpc_url))
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(feed_address),
            abi=AGGREGATOR_V3_ABI,
        )
        return cls(contract)

    @property
    def decimals(self) -> int:
        if self._decimals is None:
            self._decimals = int(self._contract.functions.decimals().call())
        return self._decimals

    def latest_price(self) -> PriceQuote:
        # Both RPC reads fail the same way: decimals() is only cached once it succeeds
        try:
            decimals = self.decimals
            _, answer, _, updated_at, _ = (
                self._contract.functions.latestRoundData().call()
            )
        except Exception as e:  # web3 raises a wide range of RPC errors
            raise PriceUnavailable(f"price feed call failed: {e}") from e
        return PriceQuote(
            price=Decimal(int(answer)).scaleb(-decimals),
            updated_utc=datetime.fromtimestamp(int(updated_at), tz=timezone.utc),
        )
