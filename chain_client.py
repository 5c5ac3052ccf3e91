import threading
import time
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from loguru import logger
from web3 import Web3
from web3.exceptions import Web3Exception

# Таймаут одного RPC запроса, секунды
CALL_TIMEOUT = 30

RPC_ERRORS = (requests.RequestException, Web3Exception, ValueError, TypeError)


class ChainClientError(Exception):
    pass


class ChainConnectionError(ChainClientError):
    """Endpoint unreachable, timed out, or answered with an error or malformed data."""


class BroadcastError(ChainClientError):
    """The node rejected a raw transaction."""


class CallCancelled(ChainClientError):
    """A chain call was cut off: run deadline passed, run cancelled, or the call timed out."""


class RunDeadline:
    """Cancellation token shared by every account of a run.

    ``seconds=None`` means no deadline; ``cancel()`` still works.
    """

    def __init__(self, seconds: Optional[float] = None, clock=time.monotonic):
        self._clock = clock
        self._expires_at = clock() + seconds if seconds is not None else None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self) -> None:
        if self.cancelled:
            raise CallCancelled("run cancelled")
        if self.expired():
            raise CallCancelled("run deadline exceeded")


class ChainClient:
    """Thin synchronous adapter over a shared Web3 instance.

    Every call is a single JSON-RPC round-trip with no retries. ``deadline`` is
    checked before the request goes out.
    """

    def __init__(self, web3: Web3):
        self.web3 = web3

    def get_pending_nonce(self, address: str, deadline: Optional[RunDeadline] = None) -> int:
        return self._query("eth_getTransactionCount", lambda: self.web3.eth.get_transaction_count(address, "pending"), deadline)

    def get_balance(self, address: str, deadline: Optional[RunDeadline] = None) -> int:
        return self._query("eth_getBalance", lambda: self.web3.eth.get_balance(address, "latest"), deadline)

    def suggest_gas_price(self, deadline: Optional[RunDeadline] = None) -> int:
        return self._query("eth_gasPrice", lambda: self.web3.eth.gas_price, deadline)

    def get_chain_id(self, deadline: Optional[RunDeadline] = None) -> int:
        # не кэшируем: после смены RPC сеть может быть другой
        return self._query("eth_chainId", lambda: self.web3.eth.chain_id, deadline)

    def broadcast(self, raw_transaction: bytes, deadline: Optional[RunDeadline] = None) -> str:
        if deadline is not None:
            deadline.check()
        try:
            tx_hash = self.web3.eth.send_raw_transaction(raw_transaction)
        except requests.Timeout as e:
            raise CallCancelled(f"eth_sendRawTransaction timed out: {e}") from e
        except RPC_ERRORS as e:
            raise BroadcastError(f"eth_sendRawTransaction rejected: {e}") from e
        return Web3.to_hex(tx_hash)

    def _query(self, method: str, call, deadline: Optional[RunDeadline]) -> int:
        if deadline is not None:
            deadline.check()
        try:
            value = call()
        except requests.Timeout as e:
            raise CallCancelled(f"{method} timed out: {e}") from e
        except RPC_ERRORS as e:
            raise ChainConnectionError(f"{method} failed: {e}") from e
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ChainConnectionError(f"{method} returned malformed result: {value!r}")
        return value


def web3_connect(rpc_url: str, call_timeout: float = CALL_TIMEOUT, pool_size: int = 8) -> Web3:
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=max(pool_size, 1))
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    provider = Web3.HTTPProvider(
        rpc_url,
        request_kwargs={"timeout": call_timeout},
        session=session,
        exception_retry_configuration=None,
    )
    web3 = Web3(provider)

    try:
        connected = web3.is_connected()
    except RPC_ERRORS as e:
        raise ChainConnectionError(f"Failed to connect to {rpc_url}: {e}") from e
    if not connected:
        raise ChainConnectionError(f"Failed to connect to {rpc_url}")

    logger.info(f"Connected to RPC {rpc_url}")
    return web3


def connect(rpc_url: str, call_timeout: float = CALL_TIMEOUT, pool_size: int = 8) -> ChainClient:
    return ChainClient(web3_connect(rpc_url, call_timeout, pool_size))
