#!/usr/bin/env python3
"""
Capsule video worker entry point.

  capsule-worker run                        # poll the queue until stopped
  capsule-worker once                       # a single poll tick
  capsule-worker render CAPSULE_ID -o DIR   # render locally, no publish/ack
"""

import argparse
import logging
import os
import signal
import sys
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from .config import WorkerConfig
from .errors import CapsuleError
from .utils import copy_file, write_json
from .worker import CapsuleWorker


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="capsule-worker", description="Render capsule tribute videos")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING... (default: $LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Poll the video job queue until stopped")
    run.add_argument("--max-ticks", type=int, default=None)
    sub.add_parser("once", help="Process at most one job and exit")

    render = sub.add_parser("render", help="Render one capsule locally without touching the queue")
    render.add_argument("capsule_id")
    render.add_argument("-o", "--output", default="debug_videos", help="Directory for the rendered video")
    return parser


def _render_local(worker: CapsuleWorker, capsule_id: str, output: str) -> int:
    with tempfile.TemporaryDirectory(prefix=f"capsule_{capsule_id}_", dir=worker.config.scratch_root) as scratch:
        try:
            artifact = worker.render_capsule(capsule_id, scratch)
        except CapsuleError as e:
            logger.error("Render of capsule %s failed: %s", capsule_id, e)
            return 1
        local = copy_file(artifact.path, output, f"capsule_{capsule_id}.mp4")
        manifest = asdict(artifact)
        manifest["path"] = local
        write_json(Path(output) / f"capsule_{capsule_id}.json", manifest)
    print(local)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = WorkerConfig.from_env()
    setup_logging(args.log_level or os.environ.get("LOG_LEVEL", "INFO"))

    worker = CapsuleWorker.from_config(config)
    try:
        if args.command == "render":
            return _render_local(worker, args.capsule_id, args.output)
        if args.command == "once":
            worker.poll_once()
            return 0

        def _graceful(signum, _frame):
            logger.info("Signal %s received, stopping after the current job", signum)
            worker.stop()

        signal.signal(signal.SIGINT, _graceful)
        signal.signal(signal.SIGTERM, _graceful)
        worker.run_forever(max_ticks=args.max_ticks)
        return 0
    finally:
        worker.close()


if __name__ == "__main__":
    sys.exit(main())
