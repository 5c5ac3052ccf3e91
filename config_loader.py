import json
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple, Any, Dict

from web3 import Web3

from chain_client import CALL_TIMEOUT
from orchestrator import MAX_THREADS


class ConfigError(Exception):
    """Fatal configuration problem. ``code`` tells which check failed."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class SweepConfig:
    rpc: str
    receiver_address: str
    sender_private_keys: Tuple[str, ...] = field(repr=False)
    max_threads: int = MAX_THREADS
    call_timeout: float = CALL_TIMEOUT
    run_deadline: Optional[float] = None


def read_config_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as file:
            raw = file.read()
    except OSError as e:
        raise ConfigError("unreadable_file", f"error reading config file: {e}") from e

    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ConfigError("malformed_file", f"error parsing config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("malformed_file", "error parsing config file: top level must be an object")
    return data


def load_config(
    config_path: Optional[str] = None,
    rpc: Optional[str] = None,
    receiver: Optional[str] = None,
    senders: Optional[Sequence[str]] = None,
    max_threads: Optional[int] = None,
    call_timeout: Optional[float] = None,
    run_deadline: Optional[float] = None,
) -> SweepConfig:
    """Merge the JSON config file with command-line values (flags win) and validate."""
    data = read_config_file(config_path) if config_path else {}

    # флаги перекрывают значения из файла
    if rpc:
        data["rpc"] = rpc
    if receiver:
        data["receiverAddress"] = receiver
    if senders:
        data["senderPrivateKeys"] = list(senders)
    if max_threads is not None:
        data["maxThreads"] = max_threads
    if call_timeout is not None:
        data["callTimeout"] = call_timeout
    if run_deadline is not None:
        data["runDeadline"] = run_deadline

    return validate_config(data)


def validate_config(data: Dict[str, Any]) -> SweepConfig:
    rpc = data.get("rpc") or ""
    if not isinstance(rpc, str) or not rpc.strip():
        raise ConfigError("missing_rpc", "RPC URL is required")

    receiver = data.get("receiverAddress") or ""
    if not isinstance(receiver, str) or not receiver.strip():
        raise ConfigError("missing_receiver", "receiver address is required")
    receiver = receiver.strip()
    if not Web3.is_address(receiver):
        raise ConfigError("invalid_receiver", f"invalid receiver address: {receiver}")
    # адрес в смешанном регистре должен совпадать с EIP-55 checksum
    body = receiver[2:] if receiver[:2].lower() == "0x" else receiver
    if body not in (body.lower(), body.upper()) and not Web3.is_checksum_address("0x" + body):
        raise ConfigError("invalid_receiver", f"receiver address has a bad checksum: {receiver}")

    senders = data.get("senderPrivateKeys") or []
    if isinstance(senders, str) or not isinstance(senders, (list, tuple)) or len(senders) == 0:
        raise ConfigError("missing_senders", "at least one sender private key is required")

    max_threads = _positive(data, "maxThreads", MAX_THREADS, int)
    call_timeout = _positive(data, "callTimeout", CALL_TIMEOUT, float)
    run_deadline = _positive(data, "runDeadline", None, float)

    return SweepConfig(
        rpc=rpc.strip(),
        receiver_address=Web3.to_checksum_address(receiver),
        sender_private_keys=tuple(str(key) for key in senders),
        max_threads=max_threads,
        call_timeout=call_timeout,
        run_deadline=run_deadline,
    )


def _positive(data: Dict[str, Any], name: str, default, cast):
    value = data.get(name)
    if value is None:
        return default
    try:
        if isinstance(value, bool):
            raise ValueError(value)
        value = cast(value)
    except (TypeError, ValueError):
        raise ConfigError("invalid_tuning", f"{name} must be a number, got {data.get(name)!r}") from None
    if value <= 0:
        raise ConfigError("invalid_tuning", f"{name} must be positive, got {value}")
    return value

