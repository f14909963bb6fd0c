#!/usr/bin/env python3
"""Start ARQ worker for the ad board background jobs.

USAGE:
    python -m adboard.workers.start_arq_worker

    Or directly:
    arq adboard.workers.arq_worker.WorkerSettings
"""

import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def main():
    """Start the ARQ worker."""
    from arq import run_worker
    from adboard.workers.arq_worker import WorkerSettings

    logger.info("Starting ARQ worker...")
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
