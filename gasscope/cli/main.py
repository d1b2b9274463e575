"""gasscope CLI — gas profiles and flamegraphs for smart-contract transactions.

Usage:
    gasscope capture --trace <file>          Profile a saved node trace or record list
    gasscope capture --tx <hash> [--tx …]    Fetch trace(s) from a node and profile them
    gasscope validate <profile.json>         Check a profile against its schema
    gasscope schema [--show]                 Print the current profile schema
    gasscope summary <profile.json>          Rank the hottest frames
    gasscope diff <baseline> <candidate>     Compare two profiles path by path
    gasscope version                         Print version

Examples:
    gasscope capture --tx 0xabc… --rpc http://localhost:8547 -o profile.json --flamegraph flame.svg
    gasscope capture --trace trace.json --tx-id 0xabc… --summary
    gasscope diff main.json feature.json --threshold 5

Exit status: 0 success, 1 validation failure, 2 malformed input, 3 fetch failure.
"""

from __future__ import annotations

import argparse
import asyncio
import enum
import json
import sys
from pathlib import Path
from typing import Any

from gasscope import __version__
from gasscope.core.config import get_settings
from gasscope.core.errors import FetchFailure, TraceError, ValidationError
from gasscope.core.logging import setup_logging
from gasscope.profiler.profile import SCHEMA_VERSION, Profile


class ExitCode(enum.IntEnum):
    SUCCESS = 0
    VALIDATION_FAILURE = 1
    MALFORMED_INPUT = 2
    FETCH_FAILURE = 3


class InputError(Exception):
    """A file could not be read or decoded."""


# ── Coloured output helpers ──────────────────────────────────────────────────

_RESET = "\033[0m"
_BOLD = "\033[1m"
_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"


def _c(text: str, code: str) -> str:
    return f"{code}{text}{_RESET}"


def _error(message: str) -> None:
    print(_c(f"Error: {message}", _RED), file=sys.stderr)


BANNER = f"{_BOLD}{_CYAN}gasscope{_RESET} {_DIM}transaction gas profiler v{__version__}{_RESET}"


# ── CLI argument parser ─────────────────────────────────────────────────────


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gasscope",
        description="gasscope — gas profiles and flamegraphs for contract transactions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--no-banner", action="store_true", help="Suppress the startup banner")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command")

    # ── capture ──────────────────────────────────────────────────────────────
    cap = sub.add_parser("capture", help="Profile a transaction trace")
    source = cap.add_mutually_exclusive_group(required=True)
    source.add_argument("--trace", "-t", help="Saved trace file (node output or record list)")
    source.add_argument("--tx", action="append", help="Transaction hash to fetch (repeatable)")
    cap.add_argument("--rpc", help="Node RPC endpoint (default: settings rpc_url)")
    cap.add_argument("--tx-id", help="Transaction id to record for --trace (default: file name)")
    cap.add_argument("--block", type=int, help="Block number to record for --trace")
    cap.add_argument("--output", "-o", default="profile.json", help="Profile JSON path (default: profile.json)")
    cap.add_argument("--output-dir", default="profiles", help="Directory for batch output (several --tx): <tx>.json, .svg, .folded")
    cap.add_argument("--flamegraph", "-f", help="Write an SVG flamegraph to this path (batch: any value enables <tx>.svg)")
    cap.add_argument("--folded", help="Write folded stacks, one 'a;b;c weight' line per path (batch: <tx>.folded)")
    cap.add_argument("--merge-below", type=_positive_int, help="Fold stacks lighter than this gas into 'other'")
    cap.add_argument("--title", help="Flamegraph title")
    cap.add_argument("--palette", choices=["hot", "mem", "io", "java", "aqua"], help="Flamegraph palette")
    cap.add_argument("--width", type=_positive_int, help="Flamegraph width in pixels")
    cap.add_argument("--fold-recursion", action="store_true", default=None, help="Merge recursive frames in the flamegraph")
    cap.add_argument("--reverse", action="store_true", help="Icicle layout (root at top)")
    cap.add_argument("--summary", action="store_true", help="Print a text summary of hot paths")
    cap.add_argument("--top", type=_positive_int, help="Entries in the summary")

    # ── validate ─────────────────────────────────────────────────────────────
    val = sub.add_parser("validate", help="Validate a profile JSON file")
    val.add_argument("file", help="Profile JSON file")
    val.add_argument("--format", default="text", choices=["text", "json"], help="Output format")

    # ── schema ───────────────────────────────────────────────────────────────
    sch = sub.add_parser("schema", help="Show the current profile schema")
    sch.add_argument("--show", action="store_true", help="Print the full schema description")

    # ── summary ──────────────────────────────────────────────────────────────
    summ = sub.add_parser("summary", help="Rank the hottest frames of a profile")
    summ.add_argument("file", help="Profile JSON file")
    summ.add_argument("--top", "-n", type=_positive_int, help="Number of frames (default: settings summary_top_n)")
    summ.add_argument("--paths", action="store_true", help="Rank call paths by self gas (folded stacks) instead of frames")
    summ.add_argument("--format", default="table", choices=["table", "json"], help="Output format")

    # ── diff ─────────────────────────────────────────────────────────────────
    dif = sub.add_parser("diff", help="Compare two profiles by call path")
    dif.add_argument("baseline", help="Baseline profile JSON")
    dif.add_argument("candidate", help="Candidate profile JSON")
    dif.add_argument("--threshold", type=float, help="Regression threshold in percent")
    dif.add_argument("--top", "-n", type=_non_negative_int, default=20, help="Entries to show (0=all)")
    dif.add_argument("--format", default="table", choices=["table", "json"], help="Output format")

    sub.add_parser("version", help="Print version information")

    return parser


# ── File helpers ─────────────────────────────────────────────────────────────


def _read_json(path: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise InputError(f"cannot read '{path}': {exc.strerror or exc}") from exc
    except ValueError as exc:
        raise InputError(f"'{path}' is not valid JSON: {exc}") from exc


def _load_profile(path: str) -> Profile:
    return Profile.from_document(_read_json(path))


def _write(path: str | Path, content: str) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")


# ── Capture command ──────────────────────────────────────────────────────────


def _flamegraph_config(args: argparse.Namespace):
    from gasscope.reports.flamegraph import FlamegraphConfig

    return FlamegraphConfig.from_settings(
        get_settings(),
        title=args.title,
        palette=args.palette,
        width=args.width,
        fold_recursion=args.fold_recursion,
        reverse=args.reverse or None,
    )


def _top_n(args: argparse.Namespace) -> int:
    return args.top if args.top is not None else get_settings().summary_top_n


def _write_capture(
    result,
    args: argparse.Namespace,
    json_path: Path,
    svg_path: Path | None,
    folded_path: Path | None,
) -> None:
    from gasscope.profiler.analyzer import collapsed_stacks, merge_small_stacks, text_summary

    profile = result.profile
    _write(json_path, profile.dumps() + "\n")
    print(f"  Profile    {_c(str(json_path), _CYAN)}  ({profile.total_cost} gas)")
    if svg_path is not None and result.svg is not None:
        _write(svg_path, result.svg)
        print(f"  Flamegraph {_c(str(svg_path), _CYAN)}")
    if folded_path is not None:
        stacks = collapsed_stacks(profile)
        if args.merge_below is not None:
            stacks = merge_small_stacks(stacks, args.merge_below)
        _write(folded_path, "".join(s.to_line() + "\n" for s in stacks))
        print(f"  Folded     {_c(str(folded_path), _CYAN)}")
    if args.summary:
        print()
        print(text_summary(profile, _top_n(args)))


def _single_outputs(args: argparse.Namespace) -> tuple[Path, Path | None, Path | None]:
    return (
        Path(args.output),
        Path(args.flamegraph) if args.flamegraph else None,
        Path(args.folded) if args.folded else None,
    )


def _run_capture(args: argparse.Namespace) -> int:
    from gasscope.pipeline.capture import capture_trace

    if args.trace:
        raw = _read_json(args.trace)
        tx_id = args.tx_id or Path(args.trace).stem
        config = _flamegraph_config(args) if args.flamegraph else None
        result = capture_trace(raw, tx_id, args.block, flamegraph=config)
        _write_capture(result, args, *_single_outputs(args))
        return ExitCode.SUCCESS

    if len(args.tx) == 1:
        return asyncio.run(_capture_one(args))
    return asyncio.run(_capture_many(args))


async def _capture_one(args: argparse.Namespace) -> int:
    from gasscope.ingestion.rpc_client import TraceRpcClient, normalize_tx_hash
    from gasscope.pipeline.capture import capture_trace

    tx_hash = normalize_tx_hash(args.tx[0])
    async with TraceRpcClient(args.rpc) as client:
        raw = await client.debug_trace_transaction(tx_hash)
        block = await client.get_block_number(tx_hash)

    config = _flamegraph_config(args) if args.flamegraph else None
    result = capture_trace(raw, tx_hash, block, flamegraph=config)
    _write_capture(result, args, *_single_outputs(args))
    return ExitCode.SUCCESS


async def _capture_many(args: argparse.Namespace) -> int:
    from gasscope.ingestion.rpc_client import TraceRpcClient
    from gasscope.pipeline.capture import capture_batch

    out_dir = Path(args.output_dir)
    config = _flamegraph_config(args) if args.flamegraph else None
    async with TraceRpcClient(args.rpc) as client:
        items = await capture_batch(client, args.tx, flamegraph=config)

    status = ExitCode.SUCCESS
    for item in items:
        if item.ok:
            tx = item.transaction_id
            print(_c(f"  ✓ {tx}", _GREEN))
            _write_capture(
                item.result,
                args,
                out_dir / f"{tx}.json",
                out_dir / f"{tx}.svg" if args.flamegraph else None,
                out_dir / f"{tx}.folded" if args.folded else None,
            )
            continue
        print(_c(f"  ✗ {item.transaction_id}: {item.error}", _RED), file=sys.stderr)
        if isinstance(item.error, FetchFailure):
            status = ExitCode.FETCH_FAILURE
        elif status == ExitCode.SUCCESS:
            status = ExitCode.MALFORMED_INPUT
    return status


# ── Validate command ─────────────────────────────────────────────────────────


def _run_validate(args: argparse.Namespace) -> int:
    from gasscope.profiler.validator import validate_profile

    report = validate_profile(_read_json(args.file))

    if args.format == "json":
        print(json.dumps(report.to_dict(), indent=2))
    elif report.ok:
        profile = _load_profile(args.file)
        print(_c(f"✓ Valid profile: {args.file}", _GREEN))
        print(f"  Version:     {profile.schema_version}")
        print(f"  Transaction: {profile.transaction_id}")
        print(f"  Block:       {profile.block_number}")
        print(f"  Total gas:   {profile.total_cost}")
        print(f"  Frames:      {report.frames_checked}")
    else:
        print(_c(f"✗ Invalid profile: {args.file} ({len(report.violations)} violation(s))", _RED))
        for violation in report.violations:
            print(f"  {_DIM}{violation.code.value}{_RESET}  {violation}")

    return ExitCode.SUCCESS if report.ok else ExitCode.VALIDATION_FAILURE


# ── Schema command ───────────────────────────────────────────────────────────


def _run_schema(args: argparse.Namespace) -> int:
    from gasscope.profiler.profile import schema_description

    print(f"{_BOLD}gasscope profile schema{_RESET}")
    print(f"Current version: {SCHEMA_VERSION}")
    if args.show:
        print(json.dumps(schema_description(), indent=2))
    else:
        print("Use --show for the full schema description")
    return ExitCode.SUCCESS


# ── Summary command ──────────────────────────────────────────────────────────


def _run_summary(args: argparse.Namespace) -> int:
    from gasscope.profiler.analyzer import hot_paths, summarize

    profile = _load_profile(args.file)

    if args.paths:
        paths = hot_paths(profile, _top_n(args))
        if args.format == "json":
            print(json.dumps([p.to_dict() for p in paths], indent=2))
            return ExitCode.SUCCESS
        print(f"\n{_BOLD}{profile.transaction_id}{_RESET} — {profile.total_cost} gas\n")
        print(f"  {'#':>3}  {'gas':>10}  {'share':>6}  stack")
        for i, path in enumerate(paths, 1):
            print(f"  {i:>3}  {path.gas:>10}  {path.percentage:>5.1f}%  {path.stack}")
        print()
        return ExitCode.SUCCESS

    frames = summarize(profile, _top_n(args))

    if args.format == "json":
        print(json.dumps([f.to_dict() for f in frames], indent=2))
        return ExitCode.SUCCESS

    print(f"\n{_BOLD}{profile.transaction_id}{_RESET} — {profile.total_cost} gas\n")
    print(f"  {'#':>3}  {'self':>10}  {'total':>10}  {'self%':>6}  path")
    for i, frame in enumerate(frames, 1):
        print(
            f"  {i:>3}  {frame.self_cost:>10}  {frame.total_cost:>10}  "
            f"{frame.self_pct:>5.1f}%  {frame.path}"
        )
    print()
    return ExitCode.SUCCESS


# ── Diff command ─────────────────────────────────────────────────────────────


def _run_diff(args: argparse.Namespace) -> int:
    from gasscope.profiler.analyzer import diff

    baseline = _load_profile(args.baseline)
    candidate = _load_profile(args.candidate)
    threshold = args.threshold if args.threshold is not None else get_settings().regression_threshold_pct
    result = diff(baseline, candidate, threshold)

    if args.format == "json":
        print(json.dumps(result.to_dict(), indent=2))
        return ExitCode.SUCCESS

    entries = list(result)
    if args.top > 0:
        entries = entries[: args.top]
    print(f"\n{_BOLD}{baseline.transaction_id} → {candidate.transaction_id}{_RESET}")
    print(f"  Regressions above {threshold:g}%: {len(result.regressions)}\n")
    for entry in entries:
        pct = "new" if entry.delta_pct is None else f"{entry.delta_pct:+.1f}%"
        line = f"  {entry.delta:>+10}  {pct:>9}  {entry.path}"
        if entry.regression:
            line = _c(line + "  REGRESSION", _YELLOW)
        print(line)
    print()
    return ExitCode.SUCCESS


# ── Entrypoint ───────────────────────────────────────────────────────────────

_COMMANDS = {
    "capture": _run_capture,
    "validate": _run_validate,
    "schema": _run_schema,
    "summary": _run_summary,
    "diff": _run_diff,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.app_env, "DEBUG" if args.verbose else settings.log_level)

    if args.version or args.command == "version":
        print(f"gasscope {__version__}")
        print(f"Profile schema: v{SCHEMA_VERSION}")
        return ExitCode.SUCCESS

    if not args.no_banner:
        print(BANNER, file=sys.stderr)

    if not args.command:
        parser.print_help()
        return ExitCode.SUCCESS

    try:
        return int(_COMMANDS[args.command](args))
    except InputError as exc:
        _error(str(exc))
        return ExitCode.MALFORMED_INPUT
    except TraceError as exc:
        _error(f"malformed trace: {exc}")
        return ExitCode.MALFORMED_INPUT
    except ValidationError as exc:
        _error(f"invalid profile: {exc}")
        return ExitCode.VALIDATION_FAILURE
    except FetchFailure as exc:
        _error(str(exc))
        return ExitCode.FETCH_FAILURE
    except ValueError as exc:
        _error(f"invalid argument: {exc}")
        return ExitCode.MALFORMED_INPUT


if __name__ == "__main__":
    sys.exit(main())
