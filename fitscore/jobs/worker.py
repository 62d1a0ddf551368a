"""
Background worker runner.

Reads the job name from CLI args or the WORKER_JOB environment variable and
runs that job once:

    python -m fitscore.jobs.worker training
    python -m fitscore.jobs.worker scoring
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from fitscore.infrastructure.observability.logging import get_logger, setup_logging
from fitscore.jobs.scoring_job import run_scoring_job
from fitscore.jobs.training_job import run_training_job

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "training": run_training_job,
    "scoring": run_scoring_job,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "training").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


def main() -> None:
    """CLI entrypoint."""
    setup_logging()
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
