import unittest
from queue import Queue

from chance_tree_graph import chance_node, leaf, max_node, min_node
from chance_tree_telemetry import (
    CallbackTelemetrySink,
    QueueTelemetrySink,
    TelemetryEnvelope,
    emit_event,
)
from chance_tree_tracer import SearchConfig, trace_with_status


class _CollectSink:
    def __init__(self) -> None:
        self.events: list[TelemetryEnvelope] = []

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self.events.append(envelope)

    def close(self) -> None:
        return


class _BrokenSink:
    def emit(self, envelope: TelemetryEnvelope) -> None:
        raise RuntimeError("sink down")

    def close(self) -> None:
        return


def _tree():
    return max_node(
        "A",
        chance_node("X", min_node("B", leaf("B1", 3), leaf("B2", 5), probability=100)),
        chance_node("Y", leaf("C", 4, probability=60), leaf("D", 10, probability=40)),
    )


class TestTelemetry(unittest.TestCase):
    def test_trace_emits_core_telemetry_events(self):
        sink = _CollectSink()
        config = SearchConfig(is_dl=True, is_id=True, is_ab=True, is_cp=True)
        result = trace_with_status(_tree(), 3, 0, config, lower_bound=-10, upper_bound=10, telemetry_sink=sink)

        self.assertTrue(result.ok)
        names = [event.event for event in sink.events]
        self.assertEqual(names, ["trace_start", "depth_done", "depth_done", "depth_done", "trace_end"])

        start = sink.events[0].data
        self.assertEqual(start["tracer"], "*1CIDDLEM")
        self.assertEqual(start["root"], "A")
        self.assertTrue(start["config"]["is_cp"])

        depths = [event.data["depth"] for event in sink.events if event.event == "depth_done"]
        self.assertEqual(depths, [1, 2, 3])

        end = sink.events[-1].data
        self.assertEqual(end["reason"], "complete")
        self.assertEqual(end["depths"], 3)
        self.assertAlmostEqual(end["value"], 6.4)

    def test_depth_done_counts_lines(self):
        sink = _CollectSink()
        trace_with_status(_tree(), 0, 0, SearchConfig(), telemetry_sink=sink)
        done = [event.data for event in sink.events if event.event == "depth_done"]
        self.assertEqual(len(done), 1)
        # Root: 2 lines, X: 1, B: 2, Y: 2.
        self.assertEqual(done[0]["calls"], 4)
        self.assertEqual(done[0]["lines"], 7)
        self.assertEqual(done[0]["best_action"], "AY")
        self.assertEqual(done[0]["prunes"], 0)

    def test_trace_end_reason_on_structural_mismatch(self):
        sink = _CollectSink()
        root = chance_node("X", leaf("C", 1, probability=100))
        result = trace_with_status(root, 3, 0, SearchConfig(), telemetry_sink=sink)
        self.assertFalse(result.ok)
        end_events = [event for event in sink.events if event.event == "trace_end"]
        self.assertTrue(end_events)
        self.assertEqual(end_events[-1].data.get("reason"), "structural_mismatch")
        self.assertIn("'X'", end_events[-1].data.get("detail"))
        self.assertNotIn("depth_done", [event.event for event in sink.events])

    def test_trace_end_reason_on_empty_tree(self):
        sink = _CollectSink()
        trace_with_status(None, 3, 0, SearchConfig(), telemetry_sink=sink)
        self.assertEqual([event.event for event in sink.events], ["trace_start", "trace_end"])
        self.assertEqual(sink.events[-1].data["reason"], "empty_tree")
        self.assertIsNone(sink.events[-1].data["value"])

    def test_sink_failures_do_not_break_trace(self):
        result = trace_with_status(_tree(), 0, 0, SearchConfig(), telemetry_sink=_BrokenSink())
        self.assertTrue(result.ok)
        self.assertAlmostEqual(result.trace.root_value, 6.4)

    def test_queue_and_callback_sinks(self):
        queue: "Queue[TelemetryEnvelope]" = Queue()
        emit_event(QueueTelemetrySink(queue), "trace_start", {"root": "A"})
        self.assertEqual(queue.get_nowait().data, {"root": "A"})

        seen = []
        emit_event(CallbackTelemetrySink(seen.append), "trace_end", {"reason": "complete"})
        self.assertEqual([envelope.event for envelope in seen], ["trace_end"])


if __name__ == "__main__":
    unittest.main()
