import unittest

from chance_tree_graph import (
    ChanceNode,
    DecisionNode,
    NodeKind,
    chance_node,
    leaf,
    max_node,
    move_name,
    random_tree,
    tree_from_dict,
    tree_to_dict,
)


class TestTreeModel(unittest.TestCase):
    def test_builders_link_parents(self):
        c = leaf("C", 4, probability=100)
        b = chance_node("B", c)
        a = max_node("A", b)
        self.assertIs(c.parent, b)
        self.assertIs(b.parent, a)
        self.assertEqual([node.name for node in a.walk()], ["A", "B", "C"])
        self.assertEqual(b.kind, NodeKind.CHANCE)
        self.assertEqual(leaf("L", 1, maximizing=False).kind, NodeKind.MIN)

    def test_nodes_compare_by_identity(self):
        self.assertNotEqual(leaf("A", 1), leaf("A", 1))

    def test_move_name(self):
        b = chance_node("B", leaf("C", 1, probability=100))
        root = max_node("A", b)
        long_child = chance_node("Roll", leaf("C", 1, probability=100))
        root.add_child(long_child)
        self.assertEqual(move_name(b), "AB")
        self.assertEqual(move_name(long_child), "A-Roll")
        self.assertEqual(move_name(root), "")


class TestTreeFromDict(unittest.TestCase):
    def test_parses_nested_description(self):
        root = tree_from_dict(
            {
                "name": "A",
                "children": [
                    {
                        "name": "B",
                        "kind": "chance",
                        "history": 2,
                        "children": [
                            {"name": "C", "kind": "MIN", "value": 4, "probability": 60, "quiescent": True},
                        ],
                    }
                ],
            }
        )
        self.assertIsInstance(root, DecisionNode)
        self.assertTrue(root.maximizing)
        chance = root.children[0]
        self.assertIsInstance(chance, ChanceNode)
        self.assertEqual(chance.history, 2)
        child = chance.children[0]
        self.assertFalse(child.maximizing)
        self.assertEqual(child.value, 4.0)
        self.assertEqual(child.probability, 60.0)
        self.assertTrue(child.quiescent)
        self.assertIs(child.parent, chance)

    def test_to_dict_keeps_search_fields(self):
        root = max_node("A", chance_node("B", leaf("C", 4, probability=60, maximizing=False, quiescent=True)))
        raw = tree_to_dict(root)
        child = raw["children"][0]["children"][0]
        self.assertEqual(child, {"name": "C", "kind": "min", "value": 4, "quiescent": True, "probability": 60})
        self.assertNotIn("probability", raw)

    def test_rejects_bad_input(self):
        cases = [
            [],
            {"kind": "max"},
            {"name": ""},
            {"name": "A", "kind": "maybe"},
            {"name": "A", "value": "high"},
            {"name": "A", "children": "B"},
            {"name": "A", "children": [{"kind": "chance"}]},
        ]
        for raw in cases:
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    tree_from_dict(raw)


class TestRandomTree(unittest.TestCase):
    def test_seeded_trees_are_reproducible(self):
        self.assertEqual(tree_to_dict(random_tree(4, depth=3)), tree_to_dict(random_tree(4, depth=3)))

    def test_layers_alternate_and_probabilities_sum(self):
        root = random_tree(9, depth=3, value_range=(-5, 5))
        for node in root.walk():
            if isinstance(node, ChanceNode):
                self.assertTrue(node.children)
                self.assertAlmostEqual(sum(child.probability for child in node.children), 100.0)
                for child in node.children:
                    self.assertIsInstance(child, DecisionNode)
                    self.assertNotEqual(child.maximizing, node.parent.maximizing)
            elif node.is_leaf:
                self.assertTrue(-5 <= node.value <= 5)
            else:
                self.assertTrue(all(isinstance(child, ChanceNode) for child in node.children))

    def test_single_outcome_trees_are_certain(self):
        root = random_tree(2, depth=2, outcomes=(1,))
        for node in root.walk():
            if isinstance(node, ChanceNode):
                self.assertEqual([child.probability for child in node.children], [100.0])


if __name__ == "__main__":
    unittest.main()
