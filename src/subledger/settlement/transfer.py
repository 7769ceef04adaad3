"""Settlement transfer — moves the settlement token in and out of custody.

All ledger balances are held in one custodial pool. Tokens move only on
deposit (pull from the payer into custody) and on payout (push from
custody to a payee). Billing never moves tokens: it is purely a ledger
entry between a subscriber and a provider.

Transfers are invoked after the ledger mutation they settle has been
applied. A transfer that fails before anything is broadcast raises
TransferFailed and the mutation is reverted. Once a transaction has been
broadcast the tokens may have moved, so a missing or late receipt raises
TransferUnconfirmed instead and the mutation stands.

Adding a new settlement backend = implement SettlementTransfer. The
ledger core does not change.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from subledger.errors import TransferFailed, TransferUnconfirmed

# Minimal ERC-20 ABI for custody movements
ERC20_ABI = [
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "name": "transferFrom",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


@runtime_checkable
class SettlementTransfer(Protocol):
    """Contract for moving the settlement token."""

    def pull_from(self, payer: str, amount: Decimal) -> None:
        """Move amount from payer into custody.

        Raises TransferFailed or TransferUnconfirmed, as push_to does.
        """
        ...

    def push_to(self, payee: str, amount: Decimal) -> None:
        """Move amount from custody to payee.

        Raises TransferFailed if nothing moved, TransferUnconfirmed if the
        outcome is unknown.
        """
        ...


@dataclass(frozen=True)
class TransferRecord:
    """One token movement, or a broadcast still awaiting its receipt."""
    direction: str  # "pull", "push", or "pending" when unconfirmed
    party: str
    amount: Decimal
    tx_hash: Optional[str] = None


class InMemoryTransfer:
    """Custody pool kept in memory, with wallet balances and allowances.

    With enforce_balances=False every pull succeeds, which is how the CLI
    records deposits without a token backend.

    Usage:
        transfer = InMemoryTransfer()
        transfer.fund("0xabc", Decimal("500"))
        transfer.approve("0xabc", Decimal("500"))
        transfer.pull_from("0xabc", Decimal("250"))
    """

    def __init__(self, enforce_balances: bool = True) -> None:
        self._enforce = enforce_balances
        self._wallets: Dict[str, Decimal] = {}
        self._allowances: Dict[str, Decimal] = {}
        self._custody = Decimal("0")
        self._journal: List[TransferRecord] = []

    @property
    def custody_balance(self) -> Decimal:
        return self._custody

    @property
    def journal(self) -> List[TransferRecord]:
        return list(self._journal)

    def fund(self, address: str, amount: Decimal) -> None:
        self._wallets[address] = self.wallet_balance(address) + amount

    def approve(self, address: str, amount: Decimal) -> None:
        self._allowances[address] = amount

    def wallet_balance(self, address: str) -> Decimal:
        return self._wallets.get(address, Decimal("0"))

    def allowance(self, address: str) -> Decimal:
        return self._allowances.get(address, Decimal("0"))

    def pull_from(self, payer: str, amount: Decimal) -> None:
        if self._enforce:
            if self.allowance(payer) < amount:
                raise TransferFailed(payer, amount, "allowance too low")
            if self.wallet_balance(payer) < amount:
                raise TransferFailed(payer, amount, "wallet balance too low")
            self._allowances[payer] = self.allowance(payer) - amount
            self._wallets[payer] = self.wallet_balance(payer) - amount
        self._custody += amount
        self._journal.append(TransferRecord("pull", payer, amount))

    def push_to(self, payee: str, amount: Decimal) -> None:
        if self._enforce and self._custody < amount:
            raise TransferFailed(payee, amount, "custody balance too low")
        self._custody -= amount
        self._wallets[payee] = self.wallet_balance(payee) + amount
        self._journal.append(TransferRecord("push", payee, amount))


class Erc20Transfer:
    """ERC-20 custody backed by a signing custody account.

    Pulls use transferFrom (the payer must have approved the custody
    address); pushes use transfer from the custody address. Each
    transaction is signed locally and waited on for one confirmation.
    """

    def __init__(
        self,
        w3: Any,
        contract: Any,
        custody_account: Any,
        decimals: int = 18,
        receipt_timeout: int = 300,
    ) -> None:
        self._w3 = w3
        self._contract = contract
        self._account = custody_account
        self._decimals = decimals
        self._timeout = receipt_timeout
        self._journal: List[TransferRecord] = []

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        token_address: str,
        custody_private_key: str,
        decimals: int = 18,
    ) -> Erc20Transfer:
        from web3 import Web3, HTTPProvider
        from eth_account import Account

        w3 = Web3(HTTPProvider(rpc_url))
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(token_address),
            abi=ERC20_ABI,
        )
        return cls(w3, contract, Account.from_key(custody_private_key), decimals)

    @property
    def custody_address(self) -> str:
        return self._account.address

    @property
    def journal(self) -> List[TransferRecord]:
        return list(self._journal)

    def to_base_units(self, party: str, amount: Decimal) -> int:
        units = amount.scaleb(self._decimals)
        if units <= 0 or units != units.to_integral_value():
            raise TransferFailed(
                party, amount,
                f"amount is not a positive multiple of 1e-{self._decimals}",
            )
        return int(units)

    def pull_from(self, payer: str, amount: Decimal) -> None:
        units = self.to_base_units(payer, amount)
        call = self._contract.functions.transferFrom(
            payer, self.custody_address, units,
        )
        tx_hash = self._send(call, payer, amount)
        self._journal.append(TransferRecord("pull", payer, amount, tx_hash))

    def push_to(self, payee: str, amount: Decimal) -> None:
        units = self.to_base_units(payee, amount)
        call = self._contract.functions.transfer(payee, units)
        tx_hash = self._send(call, payee, amount)
        self._journal.append(TransferRecord("push", payee, amount, tx_hash))

    def _send(self, call: Any, party: str, amount: Decimal) -> str:
        try:
            tx = call.build_transaction({
                "from": self.custody_address,
                "nonce": self._w3.eth.get_transaction_count(self.custody_address),
                "chainId": self._w3.eth.chain_id,
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:  # web3 raises a wide range of RPC errors
            raise TransferFailed(party, amount, str(e)) from e

        # Broadcast: from here on the tokens may have moved
        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._timeout,
            )
        except Exception as e:
            self._journal.append(TransferRecord(
                "pending", party, amount, tx_hash.hex(),
            ))
            raise TransferUnconfirmed(party, amount, tx_hash.hex(), str(e)) from e
        if receipt["status"] != 1:
            raise TransferFailed(party, amount, f"transaction {tx_hash.hex()} reverted")
        return tx_hash.hex()
