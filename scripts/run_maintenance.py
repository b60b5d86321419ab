from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import get_args

from kinwatch.core.logging import configure_logging
from kinwatch.persistence.factory import get_store
from kinwatch.services.maintenance import MaintenanceTask, run_maintenance_task


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run one scheduled maintenance job immediately")
    parser.add_argument("task", choices=list(get_args(MaintenanceTask)), help="Maintenance job to run")
    return parser


async def _run(args: argparse.Namespace) -> int:
    result = await run_maintenance_task(args.task, get_store())
    print(json.dumps({"task": args.task, **result}))
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface job failures clearly
        print(f"run_maintenance failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
