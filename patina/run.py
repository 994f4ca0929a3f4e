"""Command line entry point for weathering simulations.

Usage::

    python -m patina.run SPEC.yml [SPEC.yml ...] [-s INLINE_YAML ...]
        [--override PATH=VALUE ...] [-v] [-l [LOG_FILE]] [-t THREADS] [--progress]

Spec files and inline fragments are merged in command line order; overrides
form one final fragment.
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Sequence, TextIO

from .builder import Fragment, SimulationBuilder
from .config_utils import (
    attach_log_files,
    configure_logging,
    overrides_fragment,
    parse_thread_count,
    resolve_log_targets,
    verbosity_level,
)
from .errors import ConfigurationError, PatinaError
from .io.paths import fs_timestamp
from .io.specs import simulation_spec_from_dict
from .merge import canonicalize

logger = logging.getLogger(__name__)

# options whose value is the next token
_VALUE_OPTIONS = {"-t", "--threads", "--override"}
_INLINE_OPTIONS = {"-s", "--spec"}
_OPTIONAL_VALUE_OPTIONS = {"-l", "--log"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="patina",
        description="Run a procedural weathering simulation from YAML specification fragments.",
    )
    parser.add_argument("specs", nargs="*", metavar="SPEC", help="Simulation spec fragment files")
    parser.add_argument(
        "-s",
        "--spec",
        dest="inline",
        action="append",
        default=[],
        metavar="YAML",
        help="Inline simulation spec fragment, merged in command line order",
    )
    parser.add_argument(
        "--override",
        action="append",
        default=[],
        metavar="PATH=VALUE",
        help="Dotted-path override applied after all fragments, e.g. --override iterations=5",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug output")
    parser.add_argument(
        "-l",
        "--log",
        action="append",
        nargs="?",
        const=None,
        metavar="LOG_FILE",
        help="Write a debug log; without a value patina-log-<datetime>.log is used",
    )
    parser.add_argument(
        "-t",
        "--threads",
        type=parse_thread_count,
        default=None,
        help="Worker threads for tracing (default: available parallelism)",
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show a console progress bar with ETA for the iteration loop.",
    )
    return parser


def ordered_fragments(argv: Sequence[str]) -> List[Fragment]:
    """Return ``(is_file, value)`` pairs for spec files and inline fragments in argv order."""

    fragments: List[Fragment] = []
    tokens = list(argv)
    i = 0
    only_positional = False
    while i < len(tokens):
        token = tokens[i]
        i += 1
        if only_positional or not token.startswith("-") or token == "-":
            fragments.append((True, token))
            continue
        if token == "--":
            only_positional = True
            continue
        name, eq, value = token.partition("=")
        if name in _INLINE_OPTIONS:
            if eq:
                fragments.append((False, value))
            elif i < len(tokens):
                fragments.append((False, tokens[i]))
                i += 1
        elif token.startswith("-s") and not token.startswith("--"):
            fragments.append((False, token[2:]))
        elif name in _VALUE_OPTIONS:
            if not eq:
                i += 1
        elif name in _OPTIONAL_VALUE_OPTIONS:
            if not eq and i < len(tokens) and not tokens[i].startswith("-"):
                i += 1
    return fragments


def report_fatal(exc: BaseException, stream: Optional[TextIO] = None) -> None:
    """Print ``fatal:`` and one ``cause:`` line per chained exception."""

    out = stream if stream is not None else sys.stderr
    out.write(f"fatal: {exc}\n")
    cause = exc.__cause__ or exc.__context__
    seen = {id(exc)}
    while cause is not None and id(cause) not in seen:
        seen.add(id(cause))
        out.write(f"cause: {cause}\n")
        cause = cause.__cause__ or cause.__context__
    out.flush()


def main(argv: Optional[List[str]] = None) -> int:
    """Command line entry point."""

    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_intermixed_args(argv)
    fragments = ordered_fragments(argv)
    if not fragments and not args.override:
        parser.error("at least one simulation spec file or inline fragment is required")

    configure_logging(verbosity_level(args.verbose))
    try:
        builder = SimulationBuilder()
        datetime_token = fs_timestamp(builder.creation_time)
        builder.append_fragments(fragments)
        overrides = overrides_fragment(args.override)
        if overrides is not None:
            fragment = simulation_spec_from_dict(overrides)
            builder.append_spec_fragment(canonicalize(fragment, builder.resolver))

        log_targets: List[Optional[str]] = list(args.log or [])
        if builder.spec.log is not None:
            log_targets.append(builder.spec.log)
        attach_log_files(resolve_log_targets(log_targets, datetime_token))

        runner = builder.build(threads=args.threads, progress=args.progress)
        for line in str(runner).splitlines():
            logger.info(line)
        runner.run()
    except (PatinaError, ConfigurationError) as exc:
        logger.debug("simulation aborted", exc_info=True)
        report_fatal(exc)
        return 1
    logger.info("Simulation finished.")
    return 0


if __name__ == "__main__":  # pragma: no cover - standard CLI entrypoint
    sys.exit(main())
