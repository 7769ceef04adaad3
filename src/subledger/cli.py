"""Subledger CLI — command-line interface for the subscription ledger.

Usage:
    python -m subledger.cli status
    python -m subledger.cli register-provider --owner 0xp --key news --fee 100
    python -m subledger.cli register-subscriber --owner 0xs --deposit 250 --providers 1
    python -m subledger.cli process-payments --id 1
    python -m subledger.cli withdraw --id 1 --amount 100 --caller 0xp
    python -m subledger.cli check-invariants

By default the settlement token is treated as pegged 1:1 to the reference
currency and deposits/payouts are only journaled in memory. With --chain
the Chainlink price feed and the ERC-20 custody account configured in the
environment (.env) are used instead.
"""

from __future__ import annotations

import argparse
import json
import sys
from decimal import Decimal
from pathlib import Path

from subledger.config import (
    ChainSettings,
    LedgerConfig,
    administrators_from_env,
)
from subledger.invariants import check
from subledger.models.ledger import BillingCycle
from subledger.persistence.event_log import EventLog
from subledger.persistence.state_store import StateStore
from subledger.service import ServiceResult, SubscriptionService
from subledger.settlement.access import StaticAccessControl
from subledger.settlement.oracle import (
    ChainlinkPriceFeed,
    ReferencePriceOracle,
    StaticPriceOracle,
)
from subledger.settlement.transfer import Erc20Transfer, InMemoryTransfer


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config" / "ledger_params.json"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _make_service(args: argparse.Namespace) -> SubscriptionService:
    """Create a SubscriptionService with durable persistence."""
    config = LedgerConfig.from_file(args.config)
    data_dir: Path = args.data
    data_dir.mkdir(parents=True, exist_ok=True)

    if args.chain:
        settings = ChainSettings.from_env()
        oracle = ReferencePriceOracle.from_config(
            ChainlinkPriceFeed.connect(settings.rpc_url, settings.price_feed_address),
            config,
        )
        transfer = Erc20Transfer.connect(
            settings.rpc_url,
            settings.token_address,
            settings.custody_private_key,
            config.token_decimals,
        )
    else:
        oracle = StaticPriceOracle(config.minimum_fee_usd, config.minimum_deposit_usd)
        transfer = InMemoryTransfer(enforce_balances=False)

    return SubscriptionService(
        oracle=oracle,
        transfer=transfer,
        access=StaticAccessControl(administrators_from_env()),
        config=config,
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        state_store=StateStore(storage_path=data_dir / "state.json"),
    )


def _report(result: ServiceResult, label: str) -> int:
    if result.success:
        print(f"{label}: {json.dumps(result.data, default=str, sort_keys=True)}")
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_register_provider(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.register_provider(args.owner, args.key, Decimal(args.fee))
    return _report(result, "Registered provider")


def cmd_remove_provider(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.remove_provider(args.id, args.caller), "Removed provider")


def cmd_update_fee(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.update_provider_fee(
        args.id, Decimal(args.fee), BillingCycle(args.cycle), args.caller,
    )
    return _report(result, "Updated provider")


def cmd_set_active(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.set_provider_active(args.id, args.state == "on", args.caller)
    return _report(result, "Provider status")


def cmd_register_subscriber(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.register_subscriber(
        args.owner, Decimal(args.deposit), args.providers,
    )
    return _report(result, "Registered subscriber")


def cmd_deposit(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.deposit(args.id, Decimal(args.amount), args.caller)
    return _report(result, "Deposited")


def cmd_subscribe(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.subscribe(args.id, args.providers, args.caller)
    return _report(result, "Subscribed")


def cmd_process_payments(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.process_payments(args.id), "Processed payments")


def cmd_withdraw(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.withdraw_earnings(args.id, Decimal(args.amount), args.caller)
    return _report(result, "Withdrew earnings")


def cmd_pause(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.pause_subscription(args.subscriber, args.provider, args.caller)
    return _report(result, "Paused")


def cmd_resume(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.resume_subscription(args.subscriber, args.provider, args.caller)
    return _report(result, "Resumed")


def cmd_provider_info(args: argparse.Namespace) -> int:
    service = _make_service(args)
    info = service.get_provider_info(args.id)
    if info is None:
        print(f"Provider not found: {args.id}", file=sys.stderr)
        return 1
    print(json.dumps({
        "owner": info.owner,
        "fee_per_cycle": str(info.fee_per_cycle),
        "balance": str(info.balance),
        "link_count": info.link_count,
        "is_active": info.is_active,
    }, indent=2))
    return 0


def cmd_subscriber_info(args: argparse.Namespace) -> int:
    service = _make_service(args)
    info = service.get_subscriber_info(args.id)
    if info is None:
        print(f"Subscriber not registered: {args.id}", file=sys.stderr)
        return 1
    print(json.dumps({
        "owner": info.owner,
        "balance": str(info.balance),
        "provider_ids": list(info.provider_ids),
    }, indent=2))
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if args.provider is not None:
        records = service.provider_history(args.provider)
    else:
        records = service.subscriber_history(args.subscriber)
    for r in records:
        print(f"{r.event_id} {r.timestamp_utc} {r.event_kind.value} "
              f"{json.dumps(r.payload, sort_keys=True)}")
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Check the parameter file and the stored ledger state."""
    store = StateStore(storage_path=args.data / "state.json")
    return check(args.config, store.load())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subledger",
        description="Recurring-billing ledger CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to ledger_params.json (default: config/ledger_params.json)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Directory for state.json and events.jsonl (default: data/)",
    )
    parser.add_argument(
        "--chain",
        action="store_true",
        help="Use the on-chain price feed and token custody from .env",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show ledger status")

    p_rp = sub.add_parser("register-provider", help="Register a provider")
    p_rp.add_argument("--owner", required=True, help="Owner address")
    p_rp.add_argument("--key", required=True, help="Provider key")
    p_rp.add_argument("--fee", required=True, help="Fee per cycle (Decimal)")

    p_rm = sub.add_parser("remove-provider", help="Remove a provider and refund earnings")
    p_rm.add_argument("--id", type=int, required=True, help="Provider ID")
    p_rm.add_argument("--caller", required=True, help="Caller address")

    p_uf = sub.add_parser("update-fee", help="Change a provider's fee and cycle")
    p_uf.add_argument("--id", type=int, required=True, help="Provider ID")
    p_uf.add_argument("--fee", required=True, help="New fee per cycle (Decimal)")
    p_uf.add_argument(
        "--cycle", default=BillingCycle.MONTH.value,
        choices=[c.value for c in BillingCycle],
        help="Billing cycle (default: month)",
    )
    p_uf.add_argument("--caller", required=True, help="Caller address")

    p_sa = sub.add_parser("set-active", help="Open or close a provider (administrators)")
    p_sa.add_argument("--id", type=int, required=True, help="Provider ID")
    p_sa.add_argument("--state", required=True, choices=["on", "off"])
    p_sa.add_argument("--caller", required=True, help="Administrator address")

    p_rs = sub.add_parser("register-subscriber", help="Register a subscriber")
    p_rs.add_argument("--owner", required=True, help="Owner address")
    p_rs.add_argument("--deposit", required=True, help="Initial deposit (Decimal)")
    p_rs.add_argument("--providers", type=int, nargs="+", required=True, help="Provider IDs")

    p_dep = sub.add_parser("deposit", help="Add funds to a subscriber's escrow")
    p_dep.add_argument("--id", type=int, required=True, help="Subscriber ID")
    p_dep.add_argument("--amount", required=True, help="Amount (Decimal)")
    p_dep.add_argument("--caller", required=True, help="Caller address")

    p_sub = sub.add_parser("subscribe", help="Link a subscriber to more providers")
    p_sub.add_argument("--id", type=int, required=True, help="Subscriber ID")
    p_sub.add_argument("--providers", type=int, nargs="+", required=True, help="Provider IDs")
    p_sub.add_argument("--caller", required=True, help="Caller address")

    p_pp = sub.add_parser("process-payments", help="Settle a provider's due links")
    p_pp.add_argument("--id", type=int, required=True, help="Provider ID")

    p_wd = sub.add_parser("withdraw", help="Withdraw provider earnings")
    p_wd.add_argument("--id", type=int, required=True, help="Provider ID")
    p_wd.add_argument("--amount", required=True, help="Amount (Decimal)")
    p_wd.add_argument("--caller", required=True, help="Caller address")

    for name, help_text in (("pause", "Pause a subscription"), ("resume", "Resume a subscription")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--subscriber", type=int, required=True, help="Subscriber ID")
        p.add_argument("--provider", type=int, required=True, help="Provider ID")
        p.add_argument("--caller", required=True, help="Caller address")

    p_pi = sub.add_parser("provider-info", help="Show a provider summary")
    p_pi.add_argument("--id", type=int, required=True, help="Provider ID")

    p_si = sub.add_parser("subscriber-info", help="Show a subscriber summary")
    p_si.add_argument("--id", type=int, required=True, help="Subscriber ID")

    p_hist = sub.add_parser("history", help="Show recorded events for a provider or subscriber")
    who = p_hist.add_mutually_exclusive_group(required=True)
    who.add_argument("--provider", type=int, help="Provider ID")
    who.add_argument("--subscriber", type=int, help="Subscriber ID")

    sub.add_parser("check-invariants", help="Run parameter and state invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "register-provider": cmd_register_provider,
        "remove-provider": cmd_remove_provider,
        "update-fee": cmd_update_fee,
        "set-active": cmd_set_active,
        "register-subscriber": cmd_register_subscriber,
        "deposit": cmd_deposit,
        "subscribe": cmd_subscribe,
        "process-payments": cmd_process_payments,
        "withdraw": cmd_withdraw,
        "pause": cmd_pause,
        "resume": cmd_resume,
        "provider-info": cmd_provider_info,
        "subscriber-info": cmd_subscriber_info,
        "history": cmd_history,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
