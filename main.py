import argparse
import sys
from typing import Optional, Sequence

from loguru import logger

from chain_client import ChainConnectionError, RunDeadline, connect
from config_loader import ConfigError, load_config
from orchestrator import log_results, sweep_all
from utils.logger import LOG_DIR, logging_setup


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Transfer the whole native balance of every sender to a single receiver address.",
    )
    parser.add_argument("-config", "--config", default="", help="Path to config file")
    parser.add_argument("-rpc", "--rpc", default="", help="EVM RPC URL")
    parser.add_argument("-receiver", "--receiver", default="", help="Receiver address")
    parser.add_argument("-sender", "--sender", action="append", default=[],
                        help="Sender private key (can be specified multiple times)")
    parser.add_argument("-threads", "--threads", type=int, default=None, help="Number of worker threads")
    parser.add_argument("-timeout", "--timeout", type=float, default=None, help="Per RPC call timeout, seconds")
    parser.add_argument("-deadline", "--deadline", type=float, default=None, help="Whole run deadline, seconds")
    parser.add_argument("-log-dir", "--log-dir", dest="log_dir", default=LOG_DIR,
                        help="Directory for log files, empty to log to console only")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging_setup(args.log_dir)

    logger.warning("======== EVM | NATIVE BALANCE SWEEP ========")

    try:
        config = load_config(
            config_path=args.config,
            rpc=args.rpc,
            receiver=args.receiver,
            senders=args.sender,
            max_threads=args.threads,
            call_timeout=args.timeout,
            run_deadline=args.deadline,
        )
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    try:
        client = connect(config.rpc, config.call_timeout, config.max_threads)
    except ChainConnectionError as e:
        logger.error(f"Failed to connect to the EVM client: {e}")
        return 1

    logger.info(f"Receiver address: {config.receiver_address}")
    results = sweep_all(
        client,
        config.receiver_address,
        config.sender_private_keys,
        max_threads=config.max_threads,
        deadline=RunDeadline(config.run_deadline),
    )
    log_results(results)

    logger.warning("======== EVM | NATIVE BALANCE SWEEP ========")
    return 0


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
