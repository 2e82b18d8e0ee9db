"""Houdini CLI: command-line interface for annotation inference.

Commands:
  houdini infer <file>         Infer the candidate assignment and report outcomes
  houdini candidates <file>    List candidate constants
  houdini callgraph <file>     Print call-graph edges (or DOT with --dot)

Exit status of ``infer``: 0 when every implementation is correct, 1
otherwise, 2 on parse or configuration errors.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from houdini import __version__
from houdini.config import FORMATS, SCHEDULES, HoudiniConfig, load_config
from houdini.core.callgraph import build_call_graph
from houdini.core.candidates import collect_candidates
from houdini.core.observers import HoudiniObserver, LoggingObserver, TextReporter, TimingObserver
from houdini.core.outcome import RefutationLog
from houdini.core.scheduler import Houdini
from houdini.errors import HoudiniException
from houdini.formatters import format_exception, format_outcome
from houdini.lang.ast import Program
from houdini.lang.parser import parse_file
from houdini.oracle.z3_oracle import Z3Oracle

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_USAGE = 2


def _load_program(path: str) -> Program:
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    return parse_file(path)


def _resolve_config(args: argparse.Namespace) -> HoudiniConfig:
    config = load_config(getattr(args, "config", None))
    return config.override(
        continue_at_error=getattr(args, "continue_at_error", None),
        schedule=getattr(args, "schedule", None),
        flush_on_inconclusive=getattr(args, "flush_on_inconclusive", None),
        flush_is_abnormal_end=getattr(args, "flush_is_abnormal_end", None),
        timeout_ms=getattr(args, "timeout", None),
        trace=getattr(args, "trace", None),
        timings=getattr(args, "timings", None),
        refuted_log=getattr(args, "refuted_log", None),
        format=getattr(args, "output_format", None),
    )


def cmd_infer(args: argparse.Namespace) -> int:
    """Run Houdini on a program file."""
    output_format = args.output_format or "pretty"
    try:
        config = _resolve_config(args)
        output_format = config.format
        program = _load_program(args.file)
    except FileNotFoundError:
        print(json.dumps({"error": f"File not found: {args.file}"}))
        return EXIT_USAGE
    except HoudiniException as e:
        print(format_exception(e, output_format))
        return EXIT_USAGE

    observers: List[HoudiniObserver] = [LoggingObserver()]
    if config.trace:
        observers.append(TextReporter(sys.stderr))
    timer: Optional[TimingObserver] = None
    if config.timings:
        timer = TimingObserver(sys.stderr)
        observers.append(timer)

    refuted_log = RefutationLog.open(config.refuted_log) if config.refuted_log else None
    try:
        houdini = Houdini(
            program,
            oracle=Z3Oracle(timeout_ms=config.timeout_ms),
            config=config,
            observers=observers,
            refutation_log=refuted_log,
        )
        try:
            outcome = houdini.run()
        finally:
            houdini.close()
    except HoudiniException as e:
        print(format_exception(e, output_format))
        return EXIT_USAGE
    finally:
        if refuted_log is not None:
            refuted_log.close()

    if timer is not None:
        timer.print_times()
    print(format_outcome(outcome, output_format, args.file))
    return EXIT_OK if outcome.all_correct() else EXIT_FAILURES


def cmd_candidates(args: argparse.Namespace) -> int:
    """List the candidate constants of a program."""
    try:
        program = _load_program(args.file)
        candidates = collect_candidates(program)
    except FileNotFoundError:
        print(json.dumps({"error": f"File not found: {args.file}"}))
        return EXIT_USAGE
    except HoudiniException as e:
        print(format_exception(e))
        return EXIT_USAGE

    for name in candidates:
        print(name)
    return EXIT_OK


def cmd_callgraph(args: argparse.Namespace) -> int:
    """Print the implementation call graph."""
    try:
        program = _load_program(args.file)
    except FileNotFoundError:
        print(json.dumps({"error": f"File not found: {args.file}"}))
        return EXIT_USAGE
    except HoudiniException as e:
        print(format_exception(e))
        return EXIT_USAGE

    cg = build_call_graph(program)
    if args.dot:
        print(cg.to_dot(title=args.file))
    else:
        for edge in cg.edges:
            print(f"{edge.caller} -> {edge.callee}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="houdini",
        description="Houdini: annotation inference over candidate invariants",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log scheduler events")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # infer
    p_infer = subparsers.add_parser("infer", help="Infer the strongest provable candidate assignment")
    p_infer.add_argument("file", help="Program file")
    p_infer.add_argument("--continue-at-error", action="store_true", default=None, dest="continue_at_error",
                         help="Keep refining after a genuine violation instead of flushing")
    p_infer.add_argument("--schedule", choices=SCHEDULES, default=None,
                         help="Worklist policy (default: spin)")
    p_infer.add_argument("--flush-on-inconclusive", action="store_true", default=None, dest="flush_on_inconclusive",
                         help="Also stop refining on timeouts and inconclusive results")
    p_infer.add_argument("--flush-is-abnormal-end", action="store_true", default=None, dest="flush_is_abnormal_end",
                         help="Report a flushed run as an abnormal end")
    p_infer.add_argument("--timeout", type=int, default=None, metavar="MS",
                         help="Per-query solver timeout in milliseconds (default: 10000)")
    p_infer.add_argument("--trace", action="store_true", default=None, help="Print every scheduler event to stderr")
    p_infer.add_argument("--timings", action="store_true", default=None, help="Print per-iteration times to stderr")
    p_infer.add_argument("--refuted-log", dest="refuted_log", default=None, metavar="PATH",
                         help="Write refuted annotations as JSON Lines")
    p_infer.add_argument("--output-format", dest="output_format", choices=FORMATS, default=None,
                         help="Output format (default: pretty)")
    p_infer.add_argument("--config", default=None, help="Config file (default: nearest .houdinirc.yml)")
    p_infer.set_defaults(func=cmd_infer)

    # candidates
    p_cand = subparsers.add_parser("candidates", help="List candidate constants")
    p_cand.add_argument("file", help="Program file")
    p_cand.set_defaults(func=cmd_candidates)

    # callgraph
    p_cg = subparsers.add_parser("callgraph", help="Print the implementation call graph")
    p_cg.add_argument("file", help="Program file")
    p_cg.add_argument("--dot", action="store_true", help="Emit Graphviz DOT")
    p_cg.set_defaults(func=cmd_callgraph)

    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
