import concurrent.futures
import threading
import traceback
from dataclasses import dataclass
from typing import List, Optional, Sequence

from loguru import logger
from web3 import Web3

from chain_client import ChainClient, RunDeadline
from sweeper import NativeSweeper, SweepError, SweepErrorKind, SweepResult
from utils.logger import account_prefix

# Количество потоков
MAX_THREADS = 8


class ResultCollector:
    """The only structure shared between worker threads."""

    def __init__(self, size: int):
        self._lock = threading.Lock()
        self._results: List[Optional[SweepResult]] = [None] * size

    def put(self, result: SweepResult) -> None:
        with self._lock:
            self._results[result.index] = result

    def has(self, index: int) -> bool:
        with self._lock:
            return self._results[index] is not None

    def ordered(self) -> List[SweepResult]:
        with self._lock:
            missing = [i for i, r in enumerate(self._results) if r is None]
            if missing:
                raise RuntimeError(f"No sweep result for accounts {missing}")
            return list(self._results)


@dataclass(frozen=True)
class SweepSummary:
    total: int
    succeeded: int
    failed: int
    swept_wei: int


def sweep_all(
    client: ChainClient,
    receiver_address: str,
    private_keys: Sequence[str],
    max_threads: int = MAX_THREADS,
    deadline: Optional[RunDeadline] = None,
) -> List[SweepResult]:
    """Sweep every key concurrently and return one result per key, in input order."""
    deadline = deadline or RunDeadline()
    sweeper = NativeSweeper(client, receiver_address, deadline)
    collector = ResultCollector(len(private_keys))

    logger.warning(f"Starting sweep in {max_threads} threads")
    logger.warning(f"Accounts queued: {len(private_keys)}")

    with concurrent.futures.ThreadPoolExecutor(max_workers=max_threads) as executor:
        futures = {
            executor.submit(sweeper.sweep, private_key, index): index
            for index, private_key in enumerate(private_keys)
        }
        try:
            _collect(futures, collector)
        except KeyboardInterrupt:
            logger.warning("Interrupted, cancelling remaining chain calls...")
            deadline.cancel()
            _collect(futures, collector)

    return collector.ordered()


def _collect(futures, collector: ResultCollector) -> None:
    for future in concurrent.futures.as_completed(futures):
        index = futures[future]
        if collector.has(index):
            continue
        try:
            collector.put(future.result())
        except Exception as e:
            # sweep() сам ловит ошибки шагов, сюда попадает только баг вне них
            logger.error(f"{account_prefix(None, index)} Unexpected error: {e}")
            logger.error(traceback.format_exc())
            error = SweepError(SweepErrorKind.BROADCAST_FAILED, f"unexpected error: {e}")
            collector.put(SweepResult.failure(index, None, error))


def summarize(results: Sequence[SweepResult]) -> SweepSummary:
    succeeded = [r for r in results if r.ok]
    return SweepSummary(
        total=len(results),
        succeeded=len(succeeded),
        failed=len(results) - len(succeeded),
        swept_wei=sum(r.amount for r in succeeded),
    )


def log_results(results: Sequence[SweepResult]) -> SweepSummary:
    for result in results:
        prefix = account_prefix(result.address, result.index)
        if result.ok:
            logger.info(f"{prefix} OK {result.amount} wei - {result.tx_hash}")
        else:
            logger.error(f"{prefix} {result.error_kind.name} - {result.error}")

    summary = summarize(results)
    logger.warning(f"Done: {summary.succeeded}/{summary.total} swept, {summary.failed} failed, "
                   f"total {Web3.from_wei(summary.swept_wei, 'ether')} ({summary.swept_wei} wei)")
    return summary
