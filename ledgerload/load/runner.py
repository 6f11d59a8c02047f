from __future__ import annotations

import argparse
import logging
from typing import Sequence

from ledgerload.domain.errors import LoadTestError
from ledgerload.load.orchestrator import Orchestrator
from ledgerload.utils.config_loader import build_load_config, load_config
from ledgerload.utils.results import write_result

logger = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drive ledger nodes with synthetic load and measure throughput.")
    parser.add_argument("--config", default=None, help="Config file (default: LEDGERLOAD_CONFIG_PATH or config/config.yaml).")
    parser.add_argument("--result", default=None, help="Result file (default: result_path from config).")
    parser.add_argument("--log-level", default="INFO", help="Logging level, e.g. DEBUG or INFO.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)

    # No-op when the host application already configured logging.
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = build_load_config(load_config(args.config))
    result_path = args.result or config.result_path

    orchestrator = Orchestrator(config)
    try:
        result = orchestrator.load()
    except LoadTestError as e:
        logger.error("Orchestrator finished with error: %s", e)
        raise SystemExit(1) from e

    write_result(result, result_path)
    logger.info("Done. Achieved %.2f tx/s across %d nodes.", result.achieved_tps, result.node_count)
