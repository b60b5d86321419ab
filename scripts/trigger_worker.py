from __future__ import annotations

from arq import run_worker

from kinwatch.core.logging import configure_logging
from kinwatch.workers.trigger_worker import WorkerSettings


def main() -> None:
    # Consume trigger jobs and fire the maintenance cron jobs in one process.
    configure_logging()
    run_worker(WorkerSettings)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
