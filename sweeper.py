import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any

from eth_account import Account
from eth_keys import keys
from eth_keys.exceptions import ValidationError
from loguru import logger
from web3 import Web3

from chain_client import ChainClient, ChainClientError, CallCancelled, RunDeadline
from utils.logger import account_prefix

# Лимит газа для обычного перевода без data
GAS_LIMIT = 21000

PRIVATE_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


class SweepErrorKind(Enum):
    INVALID_KEY = "invalid_key"
    NONCE_FETCH_FAILED = "nonce_fetch_failed"
    BALANCE_FETCH_FAILED = "balance_fetch_failed"
    GAS_PRICE_FETCH_FAILED = "gas_price_fetch_failed"
    CHAIN_ID_FETCH_FAILED = "chain_id_fetch_failed"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    SIGN_FAILED = "sign_failed"
    BROADCAST_FAILED = "broadcast_failed"


class SweepError(Exception):
    def __init__(self, kind: SweepErrorKind, message: str):
        super().__init__(message)
        self.kind = kind

    def __str__(self):
        return f"{self.kind.value}: {self.args[0]}"


@dataclass(frozen=True)
class SweepResult:
    """Outcome of one account's sweep. Exactly one of tx_hash / error_kind is set."""

    index: int
    address: Optional[str]
    tx_hash: Optional[str] = None
    amount: Optional[int] = None
    error_kind: Optional[SweepErrorKind] = None
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @classmethod
    def success(cls, index: int, address: str, tx_hash: str, amount: int) -> "SweepResult":
        return cls(index=index, address=address, tx_hash=tx_hash, amount=amount)

    @classmethod
    def failure(cls, index: int, address: Optional[str], error: SweepError) -> "SweepResult":
        return cls(
            index=index,
            address=address,
            error_kind=error.kind,
            error=error.args[0],
            cancelled=isinstance(error.__cause__, CallCancelled),
        )


def parse_private_key(raw: str) -> keys.PrivateKey:
    key_hex = str(raw).strip()
    if not PRIVATE_KEY_RE.fullmatch(key_hex):
        raise SweepError(SweepErrorKind.INVALID_KEY, "private key must be 32 bytes of hex")
    if key_hex[:2].lower() == "0x":
        key_hex = key_hex[2:]

    key_bytes = bytes.fromhex(key_hex)
    if not any(key_bytes):
        raise SweepError(SweepErrorKind.INVALID_KEY, "private key is zero")
    try:
        return keys.PrivateKey(key_bytes)
    except ValidationError as e:
        raise SweepError(SweepErrorKind.INVALID_KEY, f"private key out of range: {e}") from e


def compute_sweep_value(balance: int, gas_price: int, gas_limit: int = GAS_LIMIT) -> int:
    gas_cost = gas_price * gas_limit
    if balance <= gas_cost:
        raise SweepError(
            SweepErrorKind.INSUFFICIENT_BALANCE,
            f"balance {balance} does not cover gas cost {gas_cost}",
        )
    return balance - gas_cost


def build_transfer(nonce: int, receiver: str, value: int, gas_price: int, chain_id: int) -> Dict[str, Any]:
    return {
        "nonce": nonce,
        "to": receiver,
        "value": value,
        "gas": GAS_LIMIT,
        "gasPrice": gas_price,
        "chainId": chain_id,
        "data": b"",
    }


class NativeSweeper:
    """Moves an account's whole native balance, minus the fee, to one receiver."""

    def __init__(self, client: ChainClient, receiver_address: str, deadline: Optional[RunDeadline] = None):
        self.client = client
        self.receiver_address = Web3.to_checksum_address(receiver_address)
        self.deadline = deadline

    def sweep(self, private_key: str, index: int = 0) -> SweepResult:
        address = None
        try:
            key = parse_private_key(private_key)
            address = key.public_key.to_checksum_address()
            tx_hash, value = self._sweep(key, address, index)
        except SweepError as e:
            result = SweepResult.failure(index, address, e)
            suffix = " (cancelled)" if result.cancelled else ""
            logger.error(f"{account_prefix(address, index)} Sweep failed{suffix}: {e}")
            return result

        logger.success(f"{account_prefix(address, index)} Sent {Web3.from_wei(value, 'ether')} to "
                       f"{self.receiver_address}. Tx: {tx_hash}")
        return SweepResult.success(index, address, tx_hash, value)

    def _sweep(self, key: keys.PrivateKey, address: str, index: int):
        prefix = account_prefix(address, index)
        logger.info(f"{prefix} Sender address: {address}")

        nonce = self._fetch(SweepErrorKind.NONCE_FETCH_FAILED, self.client.get_pending_nonce, address)
        balance = self._fetch(SweepErrorKind.BALANCE_FETCH_FAILED, self.client.get_balance, address)
        logger.info(f"{prefix} Balance: {balance} wei ({Web3.from_wei(balance, 'ether')})")
        gas_price = self._fetch(SweepErrorKind.GAS_PRICE_FETCH_FAILED, self.client.suggest_gas_price)
        chain_id = self._fetch(SweepErrorKind.CHAIN_ID_FETCH_FAILED, self.client.get_chain_id)

        value = compute_sweep_value(balance, gas_price)
        tx = build_transfer(nonce, self.receiver_address, value, gas_price, chain_id)
        logger.debug(f"{prefix} nonce={nonce} gasPrice={gas_price} chainId={chain_id} value={value}")

        try:
            signed_tx = Account.sign_transaction(tx, key)
        except Exception as e:
            raise SweepError(SweepErrorKind.SIGN_FAILED, f"failed to sign transaction: {e}") from e

        try:
            tx_hash = self.client.broadcast(signed_tx.raw_transaction, self.deadline)
        except ChainClientError as e:
            raise SweepError(SweepErrorKind.BROADCAST_FAILED, f"failed to send transaction: {e}") from e
        except Exception as e:
            logger.exception(f"{prefix} Unexpected error while sending transaction")
            raise SweepError(SweepErrorKind.BROADCAST_FAILED, f"unexpected error: {e}") from e

        return tx_hash, value

    def _fetch(self, kind: SweepErrorKind, call, *args) -> int:
        try:
            return call(*args, deadline=self.deadline)
        except ChainClientError as e:
            raise SweepError(kind, str(e)) from e
        except Exception as e:
            logger.exception(f"Unexpected error during {kind.name}")
            raise SweepError(kind, f"unexpected error: {e}") from e
