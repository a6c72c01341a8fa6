"""Run a reconciliation job in the foreground.

Usage:
    python run_job.py ingest-articles
    python run_job.py auto-map
"""

import argparse
import asyncio
import sys

from recon.config import get_settings
from recon.db import create_engine, ensure_schema
from recon.jobs import JOB_ALIASES, JobRunner, JobStatus, JobTracker, build_pipelines
from recon.logging_config import setup_logging
from recon.store import ReconciliationStore


async def run(name: str) -> JobStatus:
    settings = get_settings()
    engine = create_engine(settings.db)
    try:
        await ensure_schema(engine)
        store = ReconciliationStore(engine)
        runner = JobRunner(JobTracker(store), build_pipelines(store, settings))
        return await runner.execute(name)
    finally:
        await engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument(
        "job",
        choices=["ingest-posts", "ingest-articles", "run-matching", "sync-timestamps", *JOB_ALIASES],
    )
    args = parser.parse_args()

    setup_logging()
    status = asyncio.run(run(args.job))
    return 0 if status is JobStatus.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
