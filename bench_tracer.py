"""Deterministic benchmark harness for the chance-tree tracer."""

from __future__ import annotations

import argparse
import gc
import math
import platform
import statistics
import sys
import time
from typing import Dict, List, Optional, Sequence, Tuple

from chance_tree_graph import DecisionNode, random_tree
from chance_tree_tracer import SearchConfig, trace

CONFIGS: Dict[str, SearchConfig] = {
    "plain": SearchConfig(),
    "dl": SearchConfig(is_dl=True),
    "id": SearchConfig(is_dl=True, is_id=True),
    "ab": SearchConfig(is_dl=True, is_ab=True),
    "star1": SearchConfig(is_dl=True, is_ab=True, is_cp=True),
    "full": SearchConfig(
        is_qs=True,
        is_ht=True,
        is_dl=True,
        is_id=True,
        is_ab=True,
        is_cp=True,
        allow_sss=True,
    ),
}


def _generate_trees(*, trees: int, depth: int, seed: int, value_bound: int) -> List[DecisionNode]:
    return [
        random_tree(
            seed + idx,
            depth=depth,
            value_range=(-value_bound, value_bound),
            quiescent_rate=0.2,
            history_max=3,
        )
        for idx in range(trees)
    ]


def _percentile(values: Sequence[float], percentile: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    if len(ordered) == 1:
        return float(ordered[0])
    rank = (len(ordered) - 1) * percentile
    lo = math.floor(rank)
    hi = math.ceil(rank)
    if lo == hi:
        return float(ordered[lo])
    frac = rank - lo
    return float(ordered[lo] * (1.0 - frac) + ordered[hi] * frac)


def _run_single_trace(
    root: DecisionNode,
    config: SearchConfig,
    depth: int,
    qs_depth: int,
    value_bound: int,
) -> Tuple[int, int, float]:
    result = trace(root, depth, qs_depth, config, lower_bound=-value_bound, upper_bound=value_bound)
    lines = 0
    for root_call in result.depths:
        for call in root_call.walk():
            lines += len(call.lines)
    value = result.root_value if result.root_value is not None else float("nan")
    return len(result.depths), lines, value


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Deterministic tracer benchmark")
    parser.add_argument("--trees", type=int, default=20, help="number of random trees (default: 20)")
    parser.add_argument("--tree-depth", type=int, default=3, help="decision layers per tree (default: 3)")
    parser.add_argument("--seed", type=int, default=12345, help="random seed for tree generation")
    parser.add_argument("--depth", type=int, default=3, help="search depth limit (default: 3)")
    parser.add_argument("--qs-depth", type=int, default=1, help="quiescence depth (default: 1)")
    parser.add_argument("--value-bound", type=int, default=10, help="leaf values lie in [-B, B] (default: 10)")
    parser.add_argument(
        "--config",
        choices=sorted(CONFIGS),
        action="append",
        default=None,
        help="configuration(s) to benchmark (default: all)",
    )
    parser.add_argument("--repeat", type=int, default=1, help="benchmark repeats for p50/p95 summaries")
    parser.add_argument("--no-gc", action="store_true", help="disable GC during benchmark loop")
    args = parser.parse_args(argv)

    if args.trees <= 0:
        print("--trees must be > 0")
        return 2
    if args.tree_depth <= 0:
        print("--tree-depth must be > 0")
        return 2
    if args.depth <= 0:
        print("--depth must be > 0")
        return 2
    if args.repeat <= 0:
        print("--repeat must be > 0")
        return 2
    if args.value_bound <= 0:
        print("--value-bound must be > 0")
        return 2

    names = args.config or sorted(CONFIGS)
    trees = _generate_trees(
        trees=args.trees,
        depth=args.tree_depth,
        seed=args.seed,
        value_bound=args.value_bound,
    )

    print(
        f"python={sys.version.split()[0]} platform={platform.platform()} "
        f"trees={len(trees)} depth={args.depth} qs_depth={args.qs_depth} repeats={args.repeat}"
    )
    print("rep config passes lines wall_ms value_checksum")

    gc_was_enabled = gc.isenabled()
    wall_by_config: Dict[str, List[float]] = {name: [] for name in names}
    if args.no_gc and gc_was_enabled:
        gc.disable()
    try:
        for rep in range(1, args.repeat + 1):
            for name in names:
                config = CONFIGS[name]
                total_passes = 0
                total_lines = 0
                checksum = 0.0
                start_ns = time.perf_counter_ns()
                for root in trees:
                    passes, lines, value = _run_single_trace(
                        root,
                        config,
                        args.depth,
                        args.qs_depth,
                        args.value_bound,
                    )
                    total_passes += passes
                    total_lines += lines
                    if not math.isnan(value):
                        checksum += value
                wall_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
                wall_by_config[name].append(wall_ms)
                print(
                    f"{rep:>3d} {name:<6} {total_passes:>6d} {total_lines:>7d} "
                    f"{wall_ms:>8.2f} {checksum:>+10.3f}"
                )
    finally:
        if args.no_gc and gc_was_enabled:
            gc.enable()

    if args.repeat > 1:
        for name in names:
            values = wall_by_config[name]
            print(
                f"dist {name} min={min(values):.2f} p50={_percentile(values, 0.50):.2f} "
                f"p95={_percentile(values, 0.95):.2f} max={max(values):.2f} "
                f"mean={statistics.fmean(values):.2f}"
            )

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
