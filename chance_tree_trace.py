"""Trace records produced by the chance-tree tracer, and their grid rendering.

A trace is stored as a tree of calls rather than as the grid the user sees.
Each ``Call`` holds the ``Line`` rows it produced plus the calls it spawned;
the grid is the depth-first flattening of that tree, one tree per
iterative-deepening pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

INF = 10000.0

COL_CALL = "call"
COL_OPEN = "open"
COL_VALUE = "value"
COL_BOUNDS = "LB,UB"
COL_ALPHA_BETA = "a,B"
COL_BEST = "best action,value"


def format_number(value: float) -> str:
    return f"{value:g}"


def number_to_string(value: float) -> str:
    if value >= INF:
        return "INF"
    if value <= -INF:
        return "-INF"
    return format_number(value)


def column_names(show_bounds: bool, show_alpha_beta: bool) -> List[str]:
    names = [COL_CALL, COL_OPEN, COL_VALUE]
    if show_bounds:
        names.append(COL_BOUNDS)
    if show_alpha_beta:
        names.append(COL_ALPHA_BETA)
    names.append(COL_BEST)
    return names


@dataclass
class Line:
    """One row of a call: the evaluation of a single child."""

    show_bounds: bool = False
    show_alpha_beta: bool = False
    call: str = ""
    open: str = ""
    eval: str = ""
    value_call: str = ""
    value: float = 0.0
    qs: bool = False
    sss: bool = False
    prune: bool = False
    chance_prune: bool = False
    chance: bool = False
    bounds: str = ""
    alpha: float = -INF
    beta: float = INF
    best_action: str = ""
    box_action: bool = False
    best_value: float = 0.0
    box_value: bool = False
    history_updates: List[str] = field(default_factory=list)

    def value_cell(self) -> str:
        text = self.value_call
        if text:
            text += "=" + format_number(self.value)
        flags = []
        if self.qs:
            flags.append("QS")
        if self.sss:
            flags.append("SSS")
        if self.prune:
            flags.append("Prune")
        if self.chance_prune:
            flags.append("CP")
        if flags:
            text += " (" + ",".join(flags) + ")"
        return text

    def alpha_beta_cell(self) -> str:
        return f"{number_to_string(self.alpha)}, {number_to_string(self.beta)}"

    def best_cell(self) -> str:
        history = f" {{{','.join(self.history_updates)}}}" if self.history_updates else ""
        if self.chance:
            return self.best_action + history
        if self.box_action:
            text = f"[{self.best_action}], "
        else:
            text = f"{self.best_action}, "
        if self.box_value:
            text += f"[{format_number(self.best_value)}]"
        else:
            text += format_number(self.best_value)
        return text + history

    def cells(self) -> List[str]:
        out = [self.call, self.open, self.value_cell()]
        if self.show_bounds:
            out.append(self.bounds)
        if self.show_alpha_beta:
            out.append(self.alpha_beta_cell())
        out.append(self.best_cell())
        return out


@dataclass
class Call:
    lines: List[Line] = field(default_factory=list)
    children: List["Call"] = field(default_factory=list)
    return_value: float = 0.0

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass
class Trace:
    name: str
    column_names: List[str]
    depths: List[Call] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.depths

    @property
    def root_value(self) -> Optional[float]:
        if not self.depths:
            return None
        return self.depths[-1].return_value


def rows_from_call(call: Call) -> List[List[str]]:
    rows = [line.cells() for line in call.lines]
    for child in call.children:
        rows.extend(rows_from_call(child))
    return rows


def flatten_rows(trace: Trace) -> List[List[str]]:
    """Grid rows for ``trace``, with a blank row between deepening passes."""
    blank = [""] * len(trace.column_names)
    rows: List[List[str]] = []
    for index, root_call in enumerate(trace.depths):
        if index > 0:
            rows.append(list(blank))
        rows.extend(rows_from_call(root_call))
    return rows


def format_table(trace: Trace, separator: str = " | ") -> str:
    grid: List[Sequence[str]] = [trace.column_names]
    grid.extend(flatten_rows(trace))
    widths = [0] * len(trace.column_names)
    for row in grid:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))
    out: List[str] = []
    for row_idx, row in enumerate(grid):
        out.append(separator.join(cell.ljust(widths[idx]) for idx, cell in enumerate(row)).rstrip())
        if row_idx == 0:
            out.append("-+-".join("-" * width for width in widths))
    return "\n".join(out)
