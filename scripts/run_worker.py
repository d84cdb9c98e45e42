#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.assembly import build_engine
from app.event_consumer import create_event_consumer_from_env


def main() -> int:
    parser = argparse.ArgumentParser(description="Consume contract.created events and run clause extraction.")
    parser.add_argument(
        "--iterations",
        type=int,
        default=0,
        help="Stop after N iterations (0 means run forever).",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    engine = build_engine()
    consumer = create_event_consumer_from_env(service=engine.extraction, queue_backend=engine.queue_backend)
    stats = consumer.run_forever(stop_after_iterations=args.iterations if args.iterations > 0 else None)
    print(json.dumps({"success": True, "stats": stats}, ensure_ascii=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
