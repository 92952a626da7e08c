from __future__ import annotations

import argparse
import asyncio
import logging

from repairjourney.core.config import get_settings
from repairjourney.services.wiring import build_corpus_builder


async def _run() -> int:
    # Offline job: full scan of completed sessions, one dataset artifact out.
    builder = build_corpus_builder()
    result = await builder.build_corpus_with_result()
    print(f"sessions={result.session_count}")
    print(f"backend={result.backend}")
    print(f"address={result.address}")
    return 1 if result.backend == "error" else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Build the repair journey training corpus")
    parser.parse_args()
    logging.basicConfig(level=get_settings().log_level)
    raise SystemExit(asyncio.run(_run()))


if __name__ == "__main__":
    main()
