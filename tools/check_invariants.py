#!/usr/bin/env python3
"""Subledger invariant checks against the parameter file and stored state.

Usage:
    python3 tools/check_invariants.py
    python3 tools/check_invariants.py path/to/state.json
"""

import sys
from pathlib import Path

# Add src to path for subledger imports
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from subledger.invariants import check
from subledger.persistence.state_store import StateStore


def main(argv: list[str]) -> int:
    state_path = Path(argv[0]) if argv else ROOT / "data" / "state.json"
    state = StateStore(state_path).load() if state_path.exists() else None
    return check(ROOT / "config" / "ledger_params.json", state)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
