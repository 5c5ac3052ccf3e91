"""
Sweeper Test Configuration
==========================
Shared fixtures: a fake chain client and well-known development keys.
"""

import os
import sys
import threading
from typing import Dict, List

import pytest
import rlp
from loguru import logger
from web3 import Web3

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


# ============================================================================
# TEST ACCOUNTS (public development keys, never funded on a real network)
# ============================================================================

KEY_0 = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ADDR_0 = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
KEY_1 = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
ADDR_1 = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
KEY_2 = "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a"
ADDR_2 = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
RECEIVER = "0x90F79bf6EB2c4f870365E785982E1f101E93b906"

GWEI_20 = 20_000_000_000


def decode_legacy_tx(raw: bytes) -> Dict[str, int]:
    """Decode a signed legacy transaction into its integer fields."""
    nonce, gas_price, gas, to, value, data, v, r, s = rlp.decode(raw)
    as_int = lambda b: int.from_bytes(b, "big")  # noqa: E731
    return {
        "nonce": as_int(nonce),
        "gasPrice": as_int(gas_price),
        "gas": as_int(gas),
        "to": Web3.to_checksum_address(to),
        "value": as_int(value),
        "data": data,
        "v": as_int(v),
        "chainId": (as_int(v) - 35) // 2,
    }


class FakeChainClient:
    """
    In-memory chain client with the ChainClient interface.

    Usage:
        client = FakeChainClient(gas_price=GWEI_20)
        client.set_account(ADDR_0, balance=10**15, nonce=3)
        client.fail("get_balance", ChainConnectionError("boom"))
    """

    def __init__(self, gas_price: int = GWEI_20, chain_id: int = 1):
        self.gas_price = gas_price
        self.chain_id = chain_id
        self.balances: Dict[str, int] = {}
        self.nonces: Dict[str, int] = {}
        self.failures: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self.broadcasts: List[bytes] = []
        self._lock = threading.Lock()

    def set_account(self, address: str, balance: int, nonce: int = 0):
        self.balances[address] = balance
        self.nonces[address] = nonce

    def fail(self, method: str, error: Exception):
        self.failures[method] = error

    def _enter(self, method: str, deadline, *args):
        if deadline is not None:
            deadline.check()
        with self._lock:
            self.calls.append((method,) + args)
        if method in self.failures:
            raise self.failures[method]

    def calls_to(self, method: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method]

    def get_pending_nonce(self, address: str, deadline=None) -> int:
        self._enter("get_pending_nonce", deadline, address)
        return self.nonces.get(address, 0)

    def get_balance(self, address: str, deadline=None) -> int:
        self._enter("get_balance", deadline, address)
        return self.balances.get(address, 0)

    def suggest_gas_price(self, deadline=None) -> int:
        self._enter("suggest_gas_price", deadline)
        return self.gas_price

    def get_chain_id(self, deadline=None) -> int:
        self._enter("get_chain_id", deadline)
        return self.chain_id

    def broadcast(self, raw_transaction: bytes, deadline=None) -> str:
        self._enter("broadcast", deadline)
        with self._lock:
            self.broadcasts.append(bytes(raw_transaction))
        return Web3.to_hex(Web3.keccak(raw_transaction))


# ============================================================================
# SHARED FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def reset_logger():
    """Drop sinks added by logging_setup() so they do not outlive the test."""
    yield
    logger.remove()


@pytest.fixture
def fake_client():
    return FakeChainClient()


@pytest.fixture
def funded_client():
    """ADDR_0 holds 1e15 wei, gas price is 20 gwei."""
    client = FakeChainClient(gas_price=GWEI_20, chain_id=1)
    client.set_account(ADDR_0, balance=10**15, nonce=7)
    return client

