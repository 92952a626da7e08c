from __future__ import annotations

import argparse
import asyncio
import logging

from repairjourney.core.config import get_settings
from repairjourney.services.wiring import build_consolidator


async def _run(session_ids: list[int] | None) -> int:
    # Re-consolidate journeys into the current document format from the CLI.
    consolidator = build_consolidator()
    reports = await consolidator.consolidate_all(session_ids)
    failures = [report for report in reports if not report.success]
    for report in reports:
        status = "ok" if report.success else "failed"
        print(f"session_id={report.session_id} status={status} address={report.address} error={report.error}")
    print(f"processed={len(reports)} succeeded={len(reports) - len(failures)} failed={len(failures)}")
    return 1 if failures else 0


def main() -> None:
    # Parse CLI flags for batch consolidation.
    parser = argparse.ArgumentParser(description="Consolidate repair journeys into one document per session")
    parser.add_argument("--session-id", type=int, action="append", dest="session_ids", default=None)
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level)
    raise SystemExit(asyncio.run(_run(args.session_ids)))


if __name__ == "__main__":
    main()
