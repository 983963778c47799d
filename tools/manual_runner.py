"""Utility for manually running one submission in the sandbox.

Run this helper on a host with access to the Docker daemon to execute a
source file through :class:`executor.controller.CodeExecutor` and inspect
the full :class:`executor.meta.AggregateResult`, including every per-run
metric, without going through the HTTP layer.

Example::

    python tools/manual_runner.py \
        --lang python \
        --source ./solution.py \
        --expected "hello" \
        --repeat 3

Use ``--args`` to pass program arguments or ``--input-file`` to mount an
input file as ``/code/testcase.txt``. ``--no-reuse`` forces a fresh
container per run.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from executor.languages import PROFILES
from executor.meta import AggregateResult
from executor.service import SandboxService


def run_submission(
    *,
    service: SandboxService,
    lang: str,
    source: str,
    expected: str | None,
    repeat: int,
    argv: List[str] | None,
    input_file_content: str | None,
    force_pull: bool,
) -> AggregateResult:
    """Execute one invocation in the matching mode."""

    executor = service.executor_for(lang)
    if input_file_content is not None:
        return executor.execute_code_with_test_file(
            source,
            input_file_content,
            expected,
            repeat,
            force_pull=force_pull,
        )
    if argv:
        return executor.execute_code_with_args(
            source,
            argv,
            expected,
            repeat,
            force_pull=force_pull,
        )
    return executor.execute_code(
        source,
        expected,
        repeat,
        force_pull=force_pull,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--lang",
        required=True,
        choices=sorted(PROFILES),
        help="language key of the submission",
    )
    parser.add_argument(
        "--source",
        required=True,
        type=Path,
        help="path to the source file to run",
    )
    parser.add_argument(
        "--expected",
        help="expected output, compared after trimming",
    )
    parser.add_argument(
        "--repeat",
        type=int,
        default=1,
        help="number of runs (default: 1)",
    )
    parser.add_argument(
        "--args",
        nargs="*",
        default=[],
        help="program arguments",
    )
    parser.add_argument(
        "--input-file",
        type=Path,
        help="file provided to the program as /code/testcase.txt",
    )
    parser.add_argument(
        "--force-pull",
        action="store_true",
        help="pull the image even if it exists locally",
    )
    parser.add_argument(
        "--no-reuse",
        action="store_true",
        help="do not use warm containers",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="path to executor configuration file",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""

    args = parse_args(argv)
    overrides = {}
    if args.no_reuse:
        overrides["container_reuse_enabled"] = False
    service = SandboxService(args.config, **overrides)
    try:
        result = run_submission(
            service=service,
            lang=args.lang,
            source=args.source.read_text(),
            expected=args.expected,
            repeat=args.repeat,
            argv=args.args,
            input_file_content=(args.input_file.read_text()
                                if args.input_file else None),
            force_pull=args.force_pull,
        )
    finally:
        service.close()
    print(result.model_dump_json(indent=2))
    return 0 if result.output_matched else 1


if __name__ == "__main__":
    sys.exit(main())
