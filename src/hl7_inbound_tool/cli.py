# src/hl7_inbound_tool/cli.py
"""
Command-line interface for hl7_inbound_tool.

Subcommands
-----------
parse-hl7
    Pretty-print parsed HL7 v2 segments from a file (or stdin with "-").

process
    Load one or more HL7 files into an in-memory inbound queue, seed the
    reference directory from a YAML file, run the queue processor and print
    one JSON summary per queue entry. A file may hold several messages; each
    line starting with "MSH" begins a new one.

Exit codes
----------
0  success (every entry archived)
1  handled, expected error (HL7InboundError, KeyboardInterrupt, or at least
   one entry ended in the error bin)
2  CLI usage error (argparse or validation failure)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from . import __version__
from .config import AppConfig, load_config
from .exceptions import HL7InboundError, ParseError
from .hl7_parser import parse_message, to_pretty_segments
from .logging_utils import configure_logging
from .memory_store import (
    InMemoryArchive,
    InMemoryDirectory,
    InMemoryErrorStore,
    InMemoryQueue,
    InMemoryRecordStore,
    load_directory,
)
from .processor import ProcessingOutcome, ProcessingState, QueueProcessor

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger("hl7_inbound_tool")

EXIT_OK = 0
EXIT_ERR = 1
EXIT_CLI = 2

# split before an MSH that starts a line; the terminator stays with the previous message
_MESSAGE_START = re.compile(r"(?<=[\r\n])(?=MSH)")

# ------------------------------------------------------------------------------
# Parser construction
# ------------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """
    Build and return the top-level argparse parser and subcommands.

    Returns
    -------
    argparse.ArgumentParser
        Configured parser with subcommands: parse-hl7, process.
    """
    parser = argparse.ArgumentParser(
        prog="hl7-inbound",
        description="Parse HL7 v2 messages and replay them through the inbound queue.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML config file (overrides defaults).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv, -vvv).",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"hl7-inbound-tool (cli) {__version__}",
    )

    sub = parser.add_subparsers(dest="cmd", required=True)

    # parse-hl7
    s1 = sub.add_parser("parse-hl7", help="Parse an HL7 v2 message file.")
    s1.add_argument(
        "path",
        type=Path,
        help='Path to HL7 v2 message file. Use "-" to read from stdin.',
    )

    # process
    s2 = sub.add_parser("process", help="Run HL7 files through the inbound queue.")
    s2.add_argument(
        "paths",
        type=Path,
        nargs="+",
        help="HL7 v2 message files to enqueue, in order.",
    )
    s2.add_argument(
        "-d",
        "--directory",
        type=Path,
        required=True,
        help="YAML file with users, patients, locations, forms and concepts.",
    )
    s2.add_argument(
        "--source",
        default="cli",
        help='Source system recorded on each queue entry (default "cli").',
    )
    s2.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print JSON summaries instead of NDJSON.",
    )

    return parser


# ------------------------------------------------------------------------------
# Validation helpers
# ------------------------------------------------------------------------------


def _validate_existing_file(path: Path, allow_stdin: bool = False) -> None:
    """
    Validate that a path exists and is a readable file, or is "-" if
    allow_stdin is True.

    Raises
    ------
    HL7InboundError
        If the path does not exist, is not a file, or is not readable.
    """
    if allow_stdin and str(path) == "-":
        return
    if not path.exists():
        raise HL7InboundError(f"File not found: {path}")
    if not path.is_file():
        raise HL7InboundError(f"Not a file: {path}")
    if not os.access(path, os.R_OK):
        raise HL7InboundError(f"File is not readable: {path}")


def _read_text_input(path: Path) -> str:
    """
    Read text either from a file or from stdin when path is "-".

    Raises
    ------
    HL7InboundError
        On missing files, permission errors, or OS read failures.
    """
    try:
        if str(path) == "-":
            return sys.stdin.read()
        # newline="" keeps CR segment terminators as they are on disk
        with path.open("r", encoding="utf-8", newline="") as fh:
            return fh.read()
    except FileNotFoundError:
        raise HL7InboundError(f"File not found: {path}")
    except PermissionError:
        raise HL7InboundError(f"Permission denied: {path}")
    except OSError as e:
        raise HL7InboundError(f"Failed to read {path}: {e}") from e


def _load_app_config(path: Optional[Path]) -> AppConfig:
    """Load the YAML config, mapping loader failures to HL7InboundError."""
    if path is not None:
        _validate_existing_file(path)
    try:
        return load_config(path)
    except (TypeError, yaml.YAMLError) as e:
        raise HL7InboundError(f"Invalid config file {path}: {e}") from e


def _load_directory(path: Path) -> InMemoryDirectory:
    _validate_existing_file(path)
    try:
        return load_directory(path)
    except (TypeError, yaml.YAMLError) as e:
        raise HL7InboundError(f"Invalid directory file {path}: {e}") from e


def split_messages(text: str) -> List[str]:
    """
    Split file content into messages; every line starting with MSH opens one.

    Each message keeps its own segment terminators. Blank chunks are dropped.
    """
    return [m for m in _MESSAGE_START.split(text) if m.strip()]


# ------------------------------------------------------------------------------
# Output helpers
# ------------------------------------------------------------------------------


def _outcome_summary(outcome: ProcessingOutcome, source_key: str) -> Dict[str, Any]:
    """Reduce a ProcessingOutcome to a JSON-able summary."""
    summary: Dict[str, Any] = {
        "entry_id": outcome.entry_id,
        "source_key": source_key,
        "state": outcome.state.value,
        "stage": outcome.stage.value,
        "encounter_id": outcome.encounter.id if outcome.encounter else None,
        "observation_ids": [o.id for o in outcome.observations],
        "proposal_ids": [p.id for p in outcome.proposals],
        "skipped": len(outcome.skipped),
    }
    if outcome.fatal_error is not None:
        summary["error"] = outcome.fatal_error.error
        summary["error_details"] = outcome.fatal_error.error_details
    if outcome.aggregated_error is not None:
        summary["observation_errors"] = [
            {"error": f.error, "error_details": f.error_details}
            for f in outcome.aggregated_error.failures
        ]
    return summary


def _write_summaries(summaries: List[Dict[str, Any]], pretty: bool) -> None:
    """Write summaries to stdout as NDJSON, or indented JSON when pretty."""
    for i, s in enumerate(summaries):
        if pretty:
            if i:
                sys.stdout.write("\n")
            sys.stdout.write(json.dumps(s, indent=2))
        else:
            sys.stdout.write(json.dumps(s, separators=(",", ":")))
        sys.stdout.write("\n")
    sys.stdout.flush()


# ------------------------------------------------------------------------------
# Command handlers
# ------------------------------------------------------------------------------


def _cmd_parse_hl7(path: Path) -> int:
    """
    Parse-hl7: pretty-print HL7 v2 segments.

    Raises
    ------
    HL7InboundError
        If input is invalid, unreadable or cannot be parsed.
    """
    _validate_existing_file(path, allow_stdin=True)
    content = _read_text_input(path)
    try:
        msg = parse_message(content)
    except ParseError as e:
        raise HL7InboundError(f"Failed to parse {path}: {e}") from e
    for line in to_pretty_segments(msg):
        print(line)
    return EXIT_OK


def _cmd_process(
    paths: List[Path],
    directory_path: Path,
    config: AppConfig,
    source: str,
    pretty: bool,
) -> int:
    """
    Process: enqueue HL7 files, run the queue and print a summary per entry.

    Returns
    -------
    int
        EXIT_OK when every entry was archived, EXIT_ERR otherwise.
    """
    for path in paths:
        _validate_existing_file(path)
    directory = _load_directory(directory_path)

    queue = InMemoryQueue()
    keys: Dict[Optional[int], str] = {}
    for path in paths:
        messages = split_messages(_read_text_input(path))
        for n, text in enumerate(messages, start=1):
            key = path.name if len(messages) == 1 else f"{path.name}#{n}"
            entry = queue.add(text, source=source, source_key=key)
            keys[entry.id] = key
    LOG.debug("Enqueued %d message(s) from %d file(s)", len(queue), len(paths))

    processor = QueueProcessor(
        queue=queue,
        archive=InMemoryArchive(),
        errors=InMemoryErrorStore(),
        directory=directory,
        records=InMemoryRecordStore(),
        config=config,
    )
    outcomes = processor.run()

    _write_summaries([_outcome_summary(o, keys[o.entry_id]) for o in outcomes], pretty)

    if len(queue):
        raise HL7InboundError(f"{len(queue)} queue entries left unprocessed")
    if any(o.state is ProcessingState.ERRORED for o in outcomes):
        return EXIT_ERR
    return EXIT_OK


# ------------------------------------------------------------------------------
# Entrypoint
# ------------------------------------------------------------------------------


def main(argv: Optional[list[str]] = None) -> int:
    """
    CLI entrypoint.

    Parameters
    ----------
    argv : list[str] or None, default None
        Argument list for testing; None uses sys.argv[1:].

    Returns
    -------
    int
        Process exit code (EXIT_OK, EXIT_ERR, or EXIT_CLI).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = _load_app_config(args.config)
        configure_logging(args.verbose, fmt=config.log_format)

        if args.cmd == "parse-hl7":
            return _cmd_parse_hl7(args.path)
        if args.cmd == "process":
            return _cmd_process(
                paths=list(args.paths),
                directory_path=args.directory,
                config=config,
                source=args.source,
                pretty=bool(args.pretty),
            )
        parser.error("Unknown command")
        return EXIT_CLI

    except HL7InboundError as e:
        LOG.error("%s", e)
        return EXIT_ERR
    except KeyboardInterrupt:
        LOG.error("Interrupted")
        return EXIT_ERR


if __name__ == "__main__":
    raise SystemExit(main())
