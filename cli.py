"""CLI for tracing expectiminimax searches over a chance tree description."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from chance_tree_graph import TreeNode, tree_from_dict
from chance_tree_telemetry import CollectingTelemetrySink
from chance_tree_trace import INF, flatten_rows, format_number, format_table
from chance_tree_tracer import SearchConfig, trace_with_status


def load_tree(path: str) -> TreeNode:
    if path == "-":
        raw = json.load(sys.stdin)
    else:
        with Path(path).open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
    return tree_from_dict(raw)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Trace an expectiminimax search over a chance tree")
    parser.add_argument("tree", help="JSON tree description ('-' reads stdin)")
    parser.add_argument("--depth", type=int, default=3, help="depth limit used with --dl/--id (default: 3)")
    parser.add_argument("--qs-depth", type=int, default=1, help="quiescence depth used with --qs (default: 1)")
    parser.add_argument("--dl", action="store_true", help="depth-limited search")
    parser.add_argument("--id", action="store_true", help="iterative deepening from depth 1 to --depth")
    parser.add_argument("--qs", action="store_true", help="quiescence search extension")
    parser.add_argument("--ht", action="store_true", help="history-heuristic move ordering")
    parser.add_argument("--ab", action="store_true", help="alpha-beta / Star-1 bounds")
    parser.add_argument("--cp", action="store_true", help="Star-1 chance pruning (needs --ab)")
    parser.add_argument("--sss", action="store_true", help="allow the single-successor shortcut")
    parser.add_argument("--lower", type=float, default=-INF, help="static lower bound on leaf values")
    parser.add_argument("--upper", type=float, default=INF, help="static upper bound on leaf values")
    parser.add_argument("--json", action="store_true", help="print the trace grid as JSON")
    parser.add_argument("--events", action="store_true", help="print telemetry events after the trace")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.depth < 0:
        print("--depth must be non-negative")
        return 2
    if args.qs_depth < 0:
        print("--qs-depth must be non-negative")
        return 2
    if args.cp and not args.ab:
        print("--cp requires --ab")
        return 2
    if args.ab and args.lower > args.upper:
        print("--lower must not exceed --upper")
        return 2

    try:
        root = load_tree(args.tree)
    except OSError as exc:
        print(f"cannot read tree: {exc}")
        return 2
    except json.JSONDecodeError as exc:
        print(f"invalid JSON: {exc}")
        return 2
    except ValueError as exc:
        print(f"invalid tree: {exc}")
        return 2

    config = SearchConfig(
        is_qs=args.qs,
        is_ht=args.ht,
        is_dl=args.dl,
        is_id=args.id,
        is_ab=args.ab,
        is_cp=args.cp,
        allow_sss=args.sss,
    )
    sink = CollectingTelemetrySink()
    result = trace_with_status(
        root,
        args.depth,
        args.qs_depth,
        config,
        lower_bound=args.lower,
        upper_bound=args.upper,
        telemetry_sink=sink,
    )

    trace = result.trace
    if args.json:
        payload = {
            "name": trace.name,
            "columns": trace.column_names,
            "rows": flatten_rows(trace),
            "value": trace.root_value,
            "error": result.error.describe() if result.error is not None else None,
        }
        print(json.dumps(payload, indent=2))
    else:
        print(trace.name)
        print(format_table(trace))
        if trace.root_value is not None:
            print()
            print(f"Value: {format_number(trace.root_value)}")

    if args.events:
        for envelope in sink.events:
            print(f"{envelope.event} {json.dumps(envelope.data, sort_keys=True)}")

    if result.error is not None:
        print(f"Trace failed: {result.error.describe()}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
