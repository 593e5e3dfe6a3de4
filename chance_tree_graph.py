"""Decision tree model for Max/Min/Chance game trees."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence
import random


class NodeKind(str, Enum):
    MAX = "max"
    MIN = "min"
    CHANCE = "chance"


@dataclass(eq=False)
class TreeNode:
    """Common node fields. Nodes hash by identity so they can key history tables."""

    name: str
    value: float = 0.0
    quiescent: bool = False
    probability: float = 0.0
    history: int = 0
    children: List["TreeNode"] = field(default_factory=list)
    parent: Optional["TreeNode"] = field(default=None, repr=False)

    @property
    def kind(self) -> NodeKind:
        raise NotImplementedError

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def add_child(self, child: "TreeNode") -> "TreeNode":
        child.parent = self
        self.children.append(child)
        return child

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(eq=False)
class DecisionNode(TreeNode):
    maximizing: bool = True

    @property
    def kind(self) -> NodeKind:
        return NodeKind.MAX if self.maximizing else NodeKind.MIN


@dataclass(eq=False)
class ChanceNode(TreeNode):
    @property
    def kind(self) -> NodeKind:
        return NodeKind.CHANCE


def max_node(name: str, *children: TreeNode, **kwargs: Any) -> DecisionNode:
    node = DecisionNode(name, maximizing=True, **kwargs)
    for child in children:
        node.add_child(child)
    return node


def min_node(name: str, *children: TreeNode, **kwargs: Any) -> DecisionNode:
    node = DecisionNode(name, maximizing=False, **kwargs)
    for child in children:
        node.add_child(child)
    return node


def chance_node(name: str, *children: TreeNode, **kwargs: Any) -> ChanceNode:
    node = ChanceNode(name, **kwargs)
    for child in children:
        node.add_child(child)
    return node


def leaf(name: str, value: float, probability: float = 0.0, maximizing: bool = True, **kwargs: Any) -> DecisionNode:
    return DecisionNode(name, value=value, probability=probability, maximizing=maximizing, **kwargs)


def move_name(node: Optional[TreeNode]) -> str:
    """Label of the move leading into ``node`` (``AB``, or ``Root-B`` for long names)."""
    if node is None or node.parent is None:
        return ""
    child = node.name
    parent = node.parent.name
    if len(child) > 1 or len(parent) > 1:
        return f"{parent}-{child}"
    return f"{parent}{child}"


def tree_from_dict(raw: Mapping[str, Any]) -> TreeNode:
    """Build a tree from a nested mapping such as a parsed JSON description.

    Keys: ``name`` (required), ``kind`` (``max``/``min``/``chance``, default
    ``max``), ``value``, ``quiescent``, ``probability``, ``history`` and
    ``children`` (a list of mappings of the same shape).
    """
    if not isinstance(raw, Mapping):
        raise ValueError(f"tree node must be a mapping, got {type(raw).__name__}")
    name = raw.get("name")
    if not isinstance(name, str) or not name:
        raise ValueError("tree node is missing a non-empty 'name'")
    kind_raw = str(raw.get("kind", NodeKind.MAX.value)).strip().lower()
    try:
        kind = NodeKind(kind_raw)
    except ValueError:
        raise ValueError(f"node {name!r}: unknown kind {kind_raw!r}") from None

    try:
        fields: Dict[str, Any] = {
            "value": float(raw.get("value", 0.0)),
            "quiescent": bool(raw.get("quiescent", False)),
            "probability": float(raw.get("probability", 0.0)),
            "history": int(raw.get("history", 0)),
        }
    except (TypeError, ValueError) as exc:
        raise ValueError(f"node {name!r}: {exc}") from None

    node: TreeNode
    if kind == NodeKind.CHANCE:
        node = ChanceNode(name, **fields)
    else:
        node = DecisionNode(name, maximizing=(kind == NodeKind.MAX), **fields)

    children = raw.get("children", [])
    if not isinstance(children, Sequence) or isinstance(children, (str, bytes)):
        raise ValueError(f"node {name!r}: 'children' must be a list")
    for child_raw in children:
        node.add_child(tree_from_dict(child_raw))
    return node


def tree_to_dict(node: TreeNode) -> Dict[str, Any]:
    out: Dict[str, Any] = {"name": node.name, "kind": node.kind.value}
    if node.is_leaf:
        out["value"] = node.value
    if node.quiescent:
        out["quiescent"] = True
    if node.parent is not None and node.parent.kind == NodeKind.CHANCE:
        out["probability"] = node.probability
    if node.history:
        out["history"] = node.history
    if node.children:
        out["children"] = [tree_to_dict(child) for child in node.children]
    return out


def _split_probabilities(rng: random.Random, count: int) -> List[float]:
    cuts = sorted(rng.randint(1, 99) for _ in range(count - 1))
    bounds = [0] + cuts + [100]
    parts = [float(hi - lo) for lo, hi in zip(bounds, bounds[1:])]
    # Cuts may coincide; keep every outcome reachable.
    if any(part == 0.0 for part in parts):
        return [100.0 / count] * count
    return parts


def random_tree(
    seed: int,
    depth: int = 2,
    branching: Sequence[int] = (1, 2, 3),
    outcomes: Sequence[int] = (1, 2, 3),
    value_range: Sequence[int] = (-10, 10),
    quiescent_rate: float = 0.0,
    history_max: int = 0,
) -> DecisionNode:
    """Seeded random tree with layers Max, Chance, Min, Chance, ... and a Max root.

    ``depth`` counts decision layers above the leaves. ``outcomes=(1,)`` gives
    certain chance nodes (one outcome at probability 100), i.e. a plain
    minimax tree. Leaf values are integers within ``value_range``.
    """
    rng = random.Random(seed)
    lo, hi = value_range
    counter = [0]

    def _name() -> str:
        counter[0] += 1
        return f"n{counter[0]}"

    def _history() -> int:
        return rng.randint(0, history_max) if history_max > 0 else 0

    def _build(level: int, maximizing: bool, probability: float) -> DecisionNode:
        quiescent = rng.random() < quiescent_rate
        if level >= depth:
            return leaf(
                _name(),
                float(rng.randint(lo, hi)),
                probability=probability,
                maximizing=maximizing,
                history=_history(),
                quiescent=quiescent,
            )
        node = DecisionNode(
            _name(),
            maximizing=maximizing,
            probability=probability,
            history=_history(),
            quiescent=quiescent,
        )
        for _ in range(rng.choice(list(branching))):
            chance = ChanceNode(_name(), history=_history())
            for prob in _split_probabilities(rng, rng.choice(list(outcomes))):
                chance.add_child(_build(level + 1, not maximizing, prob))
            node.add_child(chance)
        return node

    return _build(0, True, 0.0)
