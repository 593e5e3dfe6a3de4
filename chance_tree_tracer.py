"""Expectiminimax tracer with Star-1 pruning, quiescence, ID, history and SSS."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union
import time

from chance_tree_graph import ChanceNode, DecisionNode, TreeNode, move_name
from chance_tree_telemetry import (
    DepthDoneEvent,
    TelemetrySink,
    TraceEndEvent,
    TraceStartEvent,
    emit_dataclass_event,
)
from chance_tree_trace import (
    INF,
    Call,
    Line,
    Trace,
    column_names,
    format_number,
    number_to_string,
)

UNLIMITED_DEPTH = 10000


@dataclass(frozen=True)
class SearchConfig:
    is_qs: bool = False
    is_ht: bool = False
    is_dl: bool = False
    is_id: bool = False
    is_ab: bool = False
    is_cp: bool = False
    allow_sss: bool = False

    @property
    def depth_limited(self) -> bool:
        return self.is_dl or self.is_id

    def as_dict(self) -> Dict[str, bool]:
        return asdict(self)


def tracer_label(config: SearchConfig) -> str:
    label = ""
    if config.is_ht:
        label += "HT"
    if config.is_qs:
        label += "QS"
    if config.is_ab:
        label += "*1"
    if config.is_cp:
        label += "C"
    if config.is_id:
        label += "ID"
    label += "DLEM" if config.depth_limited else "ExpectiMinimax"
    return label


@dataclass(frozen=True)
class StructuralMismatch:
    """Why a recursive call could not be traced."""

    node: str
    expected: str
    found: str
    reason: str

    def describe(self) -> str:
        return f"{self.reason} at node {self.node!r} (expected {self.expected}, found {self.found})"


@dataclass(frozen=True)
class Evaluated:
    call: Call
    value: float


CallOutcome = Union[Evaluated, StructuralMismatch]


@dataclass(frozen=True)
class TraceResult:
    trace: Trace
    error: Optional[StructuralMismatch] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class HistoryTable:
    """Identity-keyed move counters used for history-heuristic ordering."""

    def __init__(self) -> None:
        self._counts: Dict[TreeNode, int] = {}

    @classmethod
    def from_tree(cls, root: TreeNode) -> "HistoryTable":
        table = cls()
        for node in root.walk():
            table._counts[node] = node.history
        return table

    def __getitem__(self, node: TreeNode) -> int:
        return self._counts.get(node, 0)

    def __setitem__(self, node: TreeNode, count: int) -> None:
        self._counts[node] = count

    def __len__(self) -> int:
        return len(self._counts)

    def increment(self, node: TreeNode) -> str:
        self._counts[node] = self[node] + 1
        return f"{move_name(node)}:{self._counts[node]}"

    def sort_nodes(self, nodes: Iterable[TreeNode]) -> List[TreeNode]:
        # sorted() is stable, so equal counts keep their left-to-right order.
        return sorted(nodes, key=lambda node: -self[node])


@dataclass(frozen=True)
class Window:
    alpha: float
    beta: float


class _PlainChanceBounds:
    """Running weighted sum of a chance node; never cuts."""

    def __init__(self, window: Window) -> None:
        self.window = window
        self.x = 0.0
        self.y = 1.0

    def child_window(self, prob: float) -> Window:
        self.y -= prob
        return self.window

    def fold(self, prob: float, value: float) -> Optional[float]:
        self.x += prob * value
        return None

    def bounds_text(self) -> str:
        return ""

    @property
    def total(self) -> float:
        return self.x


class _StarOneChanceBounds(_PlainChanceBounds):
    """Star-1 window tightening for one chance node.

    ``x`` is the weighted sum of the children seen so far and ``y`` the
    probability mass still unseen; ``y`` drops before each child is searched.
    """

    def __init__(self, window: Window, lower: float, upper: float, pruning: bool) -> None:
        super().__init__(window)
        self.lower = lower
        self.upper = upper
        self.pruning = pruning
        self._cut_low = -INF
        self._cut_high = INF

    def child_window(self, prob: float) -> Window:
        self.y -= prob
        if not self.pruning or prob <= 0.0:
            self._cut_low, self._cut_high = -INF, INF
            return Window(self.lower, self.upper)
        self._cut_low = (self.window.alpha - self.upper * self.y - self.x) / prob
        self._cut_high = (self.window.beta - self.lower * self.y - self.x) / prob
        return Window(max(self._cut_low, self.lower), min(self._cut_high, self.upper))

    def fold(self, prob: float, value: float) -> Optional[float]:
        self.x += prob * value
        if not self.pruning or prob <= 0.0:
            return None
        if value >= self._cut_high:
            return self.upper_estimate
        if value <= self._cut_low:
            return self.lower_estimate
        return None

    @property
    def lower_estimate(self) -> float:
        return self.x + self.y * self.lower

    @property
    def upper_estimate(self) -> float:
        return self.x + self.y * self.upper

    def bounds_text(self) -> str:
        return f"{format_number(self.lower_estimate)}, {format_number(self.upper_estimate)}"


class UnboundedPolicy:
    """Plain minimax/expectiminimax: no windows, no cutoffs."""

    def root_window(self) -> Window:
        return Window(-INF, INF)

    def suffix(self, window: Window) -> str:
        return ""

    def decision_step(self, window: Window, best: float, maximizing: bool) -> Tuple[Window, bool]:
        return window, False

    def sss_outside(self, value: float, window: Window) -> bool:
        return False

    def chance_bounds(self, window: Window) -> _PlainChanceBounds:
        return _PlainChanceBounds(window)


class StarOnePolicy(UnboundedPolicy):
    """Fail-hard alpha-beta at decision nodes, Star-1 at chance nodes."""

    def __init__(self, lower_bound: float, upper_bound: float, chance_pruning: bool) -> None:
        self.lower_bound = lower_bound
        self.upper_bound = upper_bound
        self.chance_pruning = chance_pruning

    def root_window(self) -> Window:
        return Window(self.lower_bound, self.upper_bound)

    def suffix(self, window: Window) -> str:
        return f",{number_to_string(window.alpha)},{number_to_string(window.beta)}"

    def decision_step(self, window: Window, best: float, maximizing: bool) -> Tuple[Window, bool]:
        if maximizing:
            if best >= window.beta:
                return window, True
            if best > window.alpha:
                return Window(best, window.beta), False
        else:
            if best <= window.alpha:
                return window, True
            if best < window.beta:
                return Window(window.alpha, best), False
        return window, False

    def sss_outside(self, value: float, window: Window) -> bool:
        return value <= window.alpha or value >= window.beta

    def chance_bounds(self, window: Window) -> _PlainChanceBounds:
        return _StarOneChanceBounds(window, self.lower_bound, self.upper_bound, self.chance_pruning)


def advance_depth(depth: int, qs_depth: int) -> Tuple[int, int]:
    """Depth budget handed from a chance node to its children."""
    if depth > 0:
        return depth - 1, qs_depth
    return 0, max(0, qs_depth - 1)


def is_end_point(node: TreeNode, depth: int, qs_depth: int) -> bool:
    return node.is_leaf or (depth == 0 and (not node.quiescent or qs_depth == 0))


def _sss_terminal(node: TreeNode, depth: int, qs_depth: int) -> bool:
    if node.is_leaf:
        return True
    return isinstance(node, DecisionNode) and is_end_point(node, depth, qs_depth)


def _sss_next(node: TreeNode, depth: int, qs_depth: int) -> Tuple[TreeNode, int, int]:
    child = node.children[0]
    if isinstance(node, ChanceNode):
        child_depth, child_qs = advance_depth(depth, qs_depth)
        return child, child_depth, child_qs
    return child, depth, qs_depth


def check_sss(node: TreeNode, depth: int, qs_depth: int) -> bool:
    """True when ``node`` starts a single-successor chain the search would follow to its end."""
    while not _sss_terminal(node, depth, qs_depth):
        if len(node.children) != 1:
            return False
        node, depth, qs_depth = _sss_next(node, depth, qs_depth)
    return True


def sss_value(node: TreeNode, depth: int, qs_depth: int) -> float:
    while not _sss_terminal(node, depth, qs_depth):
        node, depth, qs_depth = _sss_next(node, depth, qs_depth)
    return node.value


def sss_history_updates(history: HistoryTable, node: TreeNode, depth: int, qs_depth: int) -> List[str]:
    """Bump every node below ``node`` on its chain; deltas come back deepest first."""
    updates: List[str] = []
    while not _sss_terminal(node, depth, qs_depth):
        node, depth, qs_depth = _sss_next(node, depth, qs_depth)
        updates.append(history.increment(node))
    updates.reverse()
    return updates


@dataclass
class _TraceContext:
    config: SearchConfig
    policy: UnboundedPolicy
    history: Optional[HistoryTable] = None

    def order(self, nodes: Sequence[TreeNode]) -> List[TreeNode]:
        if self.history is None:
            return list(nodes)
        return self.history.sort_nodes(nodes)

    def open_entries(self, nodes: Sequence[TreeNode]) -> List[str]:
        if self.history is None:
            return [node.name for node in nodes]
        return [f"{node.name}{self.history[node]}" for node in nodes]

    def open_text(self, entries: List[str], index: int) -> str:
        joiner = "" if self.history is not None else " "
        return joiner.join(entries[index:])

    def depth_args(self, depth: int, qs_depth: int) -> str:
        text = ""
        if self.config.depth_limited:
            text += f",{depth}"
        if self.config.is_qs:
            text += f",{qs_depth}"
        return text

    def new_line(self, entries: List[str], index: int, node: TreeNode) -> Line:
        return Line(
            show_bounds=self.config.is_cp,
            show_alpha_beta=self.config.is_ab,
            open=self.open_text(entries, index),
            eval=node.name,
        )

    def shortcut(self, line: Line, node: TreeNode, depth: int, qs_depth: int) -> bool:
        if not self.config.allow_sss or not check_sss(node, depth, qs_depth):
            return False
        line.value = sss_value(node, depth, qs_depth)
        line.sss = True
        if self.history is not None:
            line.history_updates = sss_history_updates(self.history, node, depth, qs_depth)
        return True


def _mismatch(node: TreeNode, expected: str, reason: str) -> StructuralMismatch:
    return StructuralMismatch(node=node.name, expected=expected, found=node.kind.value, reason=reason)


def _trace_decision(
    ctx: _TraceContext,
    node: TreeNode,
    depth: int,
    qs_depth: int,
    maximizing: bool,
    window: Window,
) -> CallOutcome:
    if not isinstance(node, DecisionNode):
        return _mismatch(node, "max/min", "decision call on a chance node")
    if not node.children:
        return _mismatch(node, "max/min with children", "decision call on a leaf")

    call = Call()
    entry_window = window
    children = ctx.order(node.children)
    entries = ctx.open_entries(children)
    depth_args = ctx.depth_args(depth, qs_depth)
    child_label = "MaxChance" if maximizing else "MinChance"
    best_node: Optional[TreeNode] = None
    best_value = -1.0

    for index, child in enumerate(children):
        line = ctx.new_line(entries, index, child)
        line.value_call = f"{child_label}({child.name}{depth_args}{ctx.policy.suffix(window)})"
        if child.is_leaf:
            line.value = child.value
        elif not ctx.shortcut(line, child, depth, qs_depth):
            outcome = _trace_chance(ctx, child, depth, qs_depth, maximizing, window)
            if isinstance(outcome, StructuralMismatch):
                return outcome
            call.children.append(outcome.call)
            line.value = outcome.value

        sss_prune = line.sss and ctx.policy.sss_outside(line.value, window)
        if best_node is None:
            better = True
        elif maximizing:
            better = line.value > best_value
        else:
            better = line.value < best_value
        if better:
            best_node = child
            best_value = line.value
            window, line.prune = ctx.policy.decision_step(window, best_value, maximizing)

        line.alpha = window.alpha
        line.beta = window.beta
        line.best_action = node.name + best_node.name
        line.best_value = best_value
        call.lines.append(line)
        if line.prune:
            break
        if sss_prune:
            line.prune = True

    if ctx.history is not None:
        call.lines[-1].history_updates.append(ctx.history.increment(best_node))

    call.return_value = best_value
    call.lines[0].call = (
        f"{'Max' if maximizing else 'Min'}({node.name}{depth_args}{ctx.policy.suffix(entry_window)})"
    )
    call.lines[-1].box_value = True
    return Evaluated(call, best_value)


def _trace_chance(
    ctx: _TraceContext,
    node: TreeNode,
    depth: int,
    qs_depth: int,
    parent_maximizing: bool,
    window: Window,
) -> CallOutcome:
    if not isinstance(node, ChanceNode):
        return _mismatch(node, "chance", "chance call on a decision node")
    if not node.children:
        return _mismatch(node, "chance with children", "chance call on a leaf")

    call = Call()
    children = ctx.order(node.children)
    entries = ctx.open_entries(children)
    bounds = ctx.policy.chance_bounds(window)
    maximizing = not parent_maximizing
    child_label = "Max" if maximizing else "Min"
    cut_value: Optional[float] = None

    for index, child in enumerate(children):
        prob = child.probability / 100.0
        child_window = bounds.child_window(prob)
        child_depth, child_qs = advance_depth(depth, qs_depth)

        line = ctx.new_line(entries, index, child)
        line.chance = True
        line.alpha = window.alpha
        line.beta = window.beta
        line.value_call = (
            f"{child_label}({child.name}{ctx.depth_args(child_depth, child_qs)}"
            f"{ctx.policy.suffix(child_window)})"
        )
        if is_end_point(child, child_depth, child_qs):
            line.value = child.value
        elif not ctx.shortcut(line, child, child_depth, child_qs):
            outcome = _trace_decision(ctx, child, child_depth, child_qs, maximizing, child_window)
            if isinstance(outcome, StructuralMismatch):
                return outcome
            call.children.append(outcome.call)
            line.value = outcome.value
        line.qs = child_depth == 0 and child_qs > 0 and child.quiescent

        cut_value = bounds.fold(prob, line.value)
        line.bounds = bounds.bounds_text()
        if line.sss and ctx.policy.sss_outside(line.value, window):
            line.prune = True
        call.lines.append(line)
        if cut_value is not None:
            line.chance_prune = True
            break

    call.return_value = bounds.total if cut_value is None else cut_value
    last = call.lines[-1]
    last.best_action = f"[{format_number(bounds.total)}]"
    last.box_value = True
    call.lines[0].call = (
        f"{'MaxChance' if parent_maximizing else 'MinChance'}"
        f"({node.name}{ctx.depth_args(depth, qs_depth)}{ctx.policy.suffix(window)})"
    )
    return Evaluated(call, call.return_value)


def depth_schedule(config: SearchConfig, depth_limit: int) -> List[int]:
    if not config.depth_limited:
        return [UNLIMITED_DEPTH]
    if config.is_id:
        return list(range(1, depth_limit + 1))
    return [depth_limit]


def _root_signature(
    config: SearchConfig,
    root: TreeNode,
    depth: int,
    qs_depth: int,
    lower_bound: float,
    upper_bound: float,
) -> str:
    text = "DLM" if config.depth_limited else "Minimax"
    text += f"({root.name}"
    if config.depth_limited:
        text += f",{depth}"
    if config.is_qs:
        text += f",{qs_depth}"
    if config.is_ab:
        text += f",{number_to_string(lower_bound)},{number_to_string(upper_bound)}"
    return text + ")"


@dataclass
class _PassStats:
    calls: int = 0
    lines: int = 0
    prunes: int = 0
    chance_prunes: int = 0
    sss_shortcuts: int = 0
    best_action: str = ""


def _pass_stats(root_call: Call) -> _PassStats:
    stats = _PassStats(best_action=root_call.lines[-1].best_action)
    for call in root_call.walk():
        stats.calls += 1
        for line in call.lines:
            stats.lines += 1
            stats.prunes += int(line.prune)
            stats.chance_prunes += int(line.chance_prune)
            stats.sss_shortcuts += int(line.sss)
    return stats


def trace_with_status(
    root: Optional[TreeNode],
    depth_limit: int,
    qs_depth: int,
    config: SearchConfig,
    lower_bound: float = -INF,
    upper_bound: float = INF,
    telemetry_sink: Optional[TelemetrySink] = None,
) -> TraceResult:
    """Trace ``root`` and report a structural mismatch alongside the (empty) trace."""
    start = time.perf_counter()
    name = tracer_label(config)
    columns = column_names(show_bounds=config.is_cp, show_alpha_beta=config.is_ab)
    if not config.is_qs:
        qs_depth = 0

    emit_dataclass_event(
        telemetry_sink,
        "trace_start",
        TraceStartEvent(
            tracer=name,
            root=root.name if root is not None else "",
            depth_limit=depth_limit,
            qs_depth=qs_depth,
            lower_bound=lower_bound,
            upper_bound=upper_bound,
            config=config.as_dict(),
        ),
    )

    def _finish(result: TraceResult, reason: str) -> TraceResult:
        emit_dataclass_event(
            telemetry_sink,
            "trace_end",
            TraceEndEvent(
                depths=len(result.trace.depths),
                value=result.trace.root_value,
                elapsed_ms=int((time.perf_counter() - start) * 1000),
                reason=reason,
                detail=result.error.describe() if result.error is not None else "",
            ),
        )
        return result

    trace = Trace(name=name, column_names=columns)
    if root is None or root.is_leaf:
        return _finish(TraceResult(trace), "empty_tree")

    # One context per call: the history table carries over between deepening passes.
    ctx = _make_context(root, config, lower_bound, upper_bound)

    for depth in depth_schedule(config, depth_limit):
        pass_start = time.perf_counter()
        outcome = _trace_decision(ctx, root, depth, qs_depth, True, ctx.policy.root_window())
        if isinstance(outcome, StructuralMismatch):
            empty = Trace(name=name, column_names=list(columns))
            return _finish(TraceResult(empty, outcome), "structural_mismatch")

        root_call = outcome.call
        root_call.lines[-1].box_action = True
        root_call.lines[-1].box_value = False
        root_call.lines[0].call = _root_signature(config, root, depth, qs_depth, lower_bound, upper_bound)
        trace.depths.append(root_call)

        stats = _pass_stats(root_call)
        emit_dataclass_event(
            telemetry_sink,
            "depth_done",
            DepthDoneEvent(
                depth=depth,
                value=root_call.return_value,
                best_action=stats.best_action,
                calls=stats.calls,
                lines=stats.lines,
                prunes=stats.prunes,
                chance_prunes=stats.chance_prunes,
                sss_shortcuts=stats.sss_shortcuts,
                elapsed_ms=int((time.perf_counter() - pass_start) * 1000),
            ),
        )

    return _finish(TraceResult(trace), "complete")


def trace(
    root: Optional[TreeNode],
    depth_limit: int,
    qs_depth: int,
    config: SearchConfig,
    lower_bound: float = -INF,
    upper_bound: float = INF,
    telemetry_sink: Optional[TelemetrySink] = None,
) -> Trace:
    return trace_with_status(
        root,
        depth_limit,
        qs_depth,
        config,
        lower_bound=lower_bound,
        upper_bound=upper_bound,
        telemetry_sink=telemetry_sink,
    ).trace


def trace_decision(
    node: TreeNode,
    depth: int,
    qs_depth: int,
    maximizing: bool,
    config: Optional[SearchConfig] = None,
    window: Optional[Window] = None,
    lower_bound: float = -INF,
    upper_bound: float = INF,
) -> CallOutcome:
    """Run the decision evaluator directly on ``node`` with a fresh context."""
    ctx = _make_context(node, config, lower_bound, upper_bound)
    return _trace_decision(ctx, node, depth, qs_depth, maximizing, window or ctx.policy.root_window())


def trace_chance(
    node: TreeNode,
    depth: int,
    qs_depth: int,
    parent_maximizing: bool,
    config: Optional[SearchConfig] = None,
    window: Optional[Window] = None,
    lower_bound: float = -INF,
    upper_bound: float = INF,
) -> CallOutcome:
    """Run the chance evaluator directly on ``node`` with a fresh context."""
    ctx = _make_context(node, config, lower_bound, upper_bound)
    return _trace_chance(ctx, node, depth, qs_depth, parent_maximizing, window or ctx.policy.root_window())


def _make_context(
    node: TreeNode,
    config: Optional[SearchConfig],
    lower_bound: float,
    upper_bound: float,
) -> _TraceContext:
    config = config or SearchConfig()
    if config.is_ab:
        policy: UnboundedPolicy = StarOnePolicy(lower_bound, upper_bound, chance_pruning=config.is_cp)
    else:
        policy = UnboundedPolicy()
    history = HistoryTable.from_tree(node) if config.is_ht else None
    return _TraceContext(config=config, policy=policy, history=history)
