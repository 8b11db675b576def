"""
Entry point for the l0merge command.

  l0merge [-o OUTPUT] [-c CONSTRUCTOR] [-s SIDE_CHANNEL] INPUT...

The merged stream goes to OUTPUT (stdout when omitted); diagnostics go
to stderr. Exit status is 0 on success and 1 on any fatal condition.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from contextlib import ExitStack
from typing import BinaryIO, List, Optional

from tqdm import tqdm

from .config import MergeConfig
from .errors import CannotOpen, MergeError
from .orchestration.runner import run_merge
from .utils import init_logging


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="l0merge",
        description="Merge overlapping telemetry packet captures into one time-ordered stream.",
    )
    ap.add_argument("-o", "--output", help="merged packet output (default: stdout)")
    ap.add_argument("-c", "--constructor", help="constructor record output")
    ap.add_argument("-s", "--side-channel", help="side-channel packet output")
    ap.add_argument("--side-channel-apid", type=int, default=None,
                    help="apid forwarded to the side-channel output")
    ap.add_argument("--time-format", choices=("hex", "cds"), default="hex",
                    help="timestamp rendering in diagnostics")
    ap.add_argument("--log-level", default=os.getenv("L0MERGE_LOG_LEVEL", "INFO"))
    ap.add_argument("--log-file", default=os.getenv("L0MERGE_LOG_FILE"))
    ap.add_argument("--progress", action="store_true", help="show a progress bar over inputs")
    ap.add_argument("inputs", nargs="*")
    return ap


def _open_output(stack: ExitStack, path: Optional[str]) -> BinaryIO:
    try:
        return stack.enter_context(open(path, "wb"))
    except OSError as exc:
        raise CannotOpen(path, exc.strerror or str(exc)) from exc


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = init_logging(args.log_level, args.log_file)

    overrides = {"time_code": args.time_format}
    if args.side_channel_apid is not None:
        overrides["side_channel_apid"] = args.side_channel_apid
    try:
        config = MergeConfig(**overrides)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    try:
        with ExitStack() as stack:
            if args.output:
                output = _open_output(stack, args.output)
            else:
                output = sys.stdout.buffer
            cnst = _open_output(stack, args.constructor) if args.constructor else None
            side = _open_output(stack, args.side_channel) if args.side_channel else None

            pbar = None
            progress = None
            if args.progress:
                pbar = stack.enter_context(tqdm(total=len(args.inputs), unit="file", file=sys.stderr))

                def progress(result):
                    pbar.set_description(f"Processing: {os.path.basename(result.name)}")
                    pbar.update()

            run_merge(
                args.inputs,
                output=output,
                config=config,
                constructor_output=cnst,
                side_channel_output=side,
                progress=progress,
            )
            if pbar is not None:
                # inputs dropped by the pre-scan never reach the callback
                pbar.set_description("Done")
                pbar.update(pbar.total - pbar.n)
    except MergeError as exc:
        logger.error("%s", exc)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
