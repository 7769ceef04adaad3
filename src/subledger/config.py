"""Ledger configuration — billing parameters and chain connection settings.

Billing parameters are loaded from config/ledger_params.json. Chain
connection settings are secrets and come from the environment, which
may be populated from a .env file at the project root.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

from subledger.models.ledger import CYCLE_DURATIONS, BillingCycle

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_PARAMS_PATH = ROOT / "config" / "ledger_params.json"


@dataclass(frozen=True)
class LedgerConfig:
    """Billing parameters for the subscription ledger.

    max_providers of None disables the capacity limit. Ids are never
    reused, so removed providers still count against it.
    """

    max_providers: Optional[int] = 200
    withdrawal_lock: timedelta = timedelta(days=30)
    cycle_durations: Dict[BillingCycle, timedelta] = field(
        default_factory=lambda: dict(CYCLE_DURATIONS),
    )
    default_billing_cycle: BillingCycle = BillingCycle.MONTH
    minimum_fee_usd: Decimal = Decimal("2")
    minimum_deposit_usd: Decimal = Decimal("2")
    price_staleness: timedelta = timedelta(hours=1)
    token_decimals: int = 18

    def cycle_duration(self, cycle: BillingCycle) -> timedelta:
        return self.cycle_durations[cycle]

    @classmethod
    def from_params(cls, params: dict) -> LedgerConfig:
        """Build from a parsed ledger_params.json mapping."""
        cycles = {
            BillingCycle[name]: timedelta(days=days)
            for name, days in params["BILLING_CYCLE_DAYS"].items()
        }
        return cls(
            max_providers=params.get("MAX_PROVIDERS"),
            withdrawal_lock=timedelta(days=params["WITHDRAWAL_LOCK_DAYS"]),
            cycle_durations=cycles,
            default_billing_cycle=BillingCycle[params["DEFAULT_BILLING_CYCLE"]],
            minimum_fee_usd=Decimal(str(params["MINIMUM_FEE_USD"])),
            minimum_deposit_usd=Decimal(str(params["MINIMUM_DEPOSIT_USD"])),
            price_staleness=timedelta(seconds=params["PRICE_STALENESS_SECONDS"]),
            token_decimals=params["SETTLEMENT_TOKEN_DECIMALS"],
        )

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> LedgerConfig:
        """Load from ledger_params.json (defaults to config/ at the root)."""
        config_path = path or DEFAULT_PARAMS_PATH
        return cls.from_params(json.loads(config_path.read_text(encoding="utf-8")))


@dataclass(frozen=True)
class ChainSettings:
    """Connection settings for the chain-backed collaborators."""

    rpc_url: str
    token_address: str
    price_feed_address: str
    custody_private_key: str

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> ChainSettings:
        """Read settings from the environment after loading a .env file.

        Raises ValueError naming every missing variable.
        """
        load_dotenv(env_file or ROOT / ".env")
        names = {
            "rpc_url": "RPC_URL",
            "token_address": "TOKEN_ADDRESS",
            "price_feed_address": "PRICE_FEED_ADDRESS",
            "custody_private_key": "CUSTODY_PRIVATE_KEY",
        }
        values = {attr: os.getenv(var) for attr, var in names.items()}
        missing = [names[attr] for attr, value in values.items() if not value]
        if missing:
            raise ValueError(
                f"Missing chain settings in environment: {', '.join(missing)}"
            )
        return cls(**values)


def administrators_from_env(env_file: Optional[Path] = None) -> list[str]:
    """Comma-separated LEDGER_ADMINISTRATORS, after loading a .env file."""
    load_dotenv(env_file or ROOT / ".env")
    raw = os.getenv("LEDGER_ADMINISTRATORS", "")
    return [name.strip() for name in raw.split(",") if name.strip()]
