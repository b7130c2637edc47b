"""
Tests for whole-graph shape inference.
"""
from shapecanvas.compiler.registry import REGISTRY, NodeSpec
from shapecanvas.compiler.shape_inference import escalate, infer_shapes
from shapecanvas.templates import get_template
from graph_builders import chain, conv_pool_graph, cycle_graph, edge, linear_graph, make_graph, node


class TestShapePropagation:
    """Shapes flow through chains, branches and merges."""

    def test_conv_then_pool(self):
        """Padding-preserving conv followed by a halving pool."""
        context = infer_shapes(conv_pool_graph())

        assert context.results["conv"].shape == [1, 8, 32, 32]
        assert context.results["pool"].shape == [1, 8, 16, 16]
        assert context.results["out"].shape == [1, 8, 16, 16]
        assert not context.has_errors
        assert all(r.status == "valid" for r in context.results.values())

    def test_flatten_collapses_trailing_axes(self):
        graph = make_graph(
            [node("in", "Input", shape=[1, 16, 16, 16]), node("flat", "Flatten"), node("out", "Output")],
            chain("in", "flat", "out"),
        )
        context = infer_shapes(graph)

        assert context.results["flat"].shape == [1, 4096]

    def test_linear_replaces_last_axis(self):
        context = infer_shapes(linear_graph())

        assert context.results["fc"].shape == [1, 10]
        assert context.results["fc"].status == "valid"

    def test_linear_in_features_mismatch_is_error(self):
        """A wrong in_features still yields a shape, but the node is in error."""
        context = infer_shapes(linear_graph(in_features=10))
        fc = context.results["fc"]

        assert fc.status == "error"
        assert fc.messages == ["Expected in_features=10 but received 4096"]
        assert fc.shape == [1, 10]
        assert context.has_errors

    def test_two_branch_concat(self):
        graph = get_template("two-branch")
        context = infer_shapes(graph)

        assert context.results["branch_a"].shape == [1, 4]
        assert context.results["branch_b"].shape == [1, 6]
        assert context.results["concat"].shape == [1, 10]
        assert not context.has_errors

    def test_residual_block_with_projection(self):
        graph = make_graph(
            [
                node("in", "Input", shape=[1, 64, 56, 56]),
                node(
                    "res", "ResidualBlock",
                    in_channels=64, out_channels=128, stride=2, use_projection=True,
                ),
                node("out", "Output"),
            ],
            chain("in", "res", "out"),
        )
        context = infer_shapes(graph)

        assert context.results["res"].shape == [1, 128, 28, 28]
        assert context.results["res"].status == "valid"

    def test_residual_without_projection_warns(self):
        graph = make_graph(
            [
                node("in", "Input", shape=[1, 64, 56, 56]),
                node("res", "ResidualBlock", in_channels=64, out_channels=128, stride=2),
                node("out", "Output"),
            ],
            chain("in", "res", "out"),
        )
        res = infer_shapes(graph).results["res"]

        assert res.status == "warning"
        assert "enable use_projection" in res.messages[0]

    def test_dynamic_batch_is_preserved(self):
        graph = make_graph(
            [
                node("in", "Input", shape=[-1, 3, 32, 32]),
                node("conv", "Conv2d", in_channels=3, out_channels=8, kernel_size=3, padding=1),
                node("flat", "Flatten"),
                node("out", "Output"),
            ],
            chain("in", "conv", "flat", "out"),
        )
        context = infer_shapes(graph)

        assert context.results["conv"].shape == [-1, 8, 32, 32]
        assert context.results["flat"].shape == [-1, 8192]

    def test_input_falls_back_to_input_spec(self):
        graph = make_graph(
            [node("in", "Input"), node("out", "Output")],
            chain("in", "out"),
            input_shape=[2, 3, 8, 8],
        )
        context = infer_shapes(graph)

        assert context.results["in"].shape == [2, 3, 8, 8]
        assert context.results["in"].dtype == "float32"


class TestMergeSemantics:
    """Add is strict, Concat only warns."""

    def test_add_mismatch_is_error(self):
        graph = make_graph(
            [
                node("in", "Input", shape=[1, 4]),
                node("wide", "Linear", in_features=4, out_features=6),
                node("add", "Add"),
                node("out", "Output"),
            ],
            [edge("in", "wide"), edge("in", "add"), edge("wide", "add"), edge("add", "out")],
        )
        add = infer_shapes(graph).results["add"]

        assert add.status == "error"
        assert add.messages == ["Input 2 shape mismatch for Add"]

    def test_add_accepts_the_same_tensor_twice(self):
        """Duplicate edges count as separate inputs."""
        graph = make_graph(
            [node("in", "Input", shape=[1, 4]), node("add", "Add"), node("out", "Output")],
            [edge("in", "add", "e1"), edge("in", "add", "e2"), edge("add", "out")],
        )
        add = infer_shapes(graph).results["add"]

        assert add.status == "valid"
        assert add.shape == [1, 4]

    def test_concat_mismatch_is_warning(self):
        graph = make_graph(
            [
                node("a", "Input", shape=[1, 3, 8, 8]),
                node("b", "Input", shape=[1, 3, 4, 4]),
                node("cat", "Concat", dim=1),
                node("out", "Output"),
            ],
            [edge("a", "cat"), edge("b", "cat"), edge("cat", "out")],
        )
        context = infer_shapes(graph)
        cat = context.results["cat"]

        assert cat.status == "warning"
        assert cat.shape == [1, 6, 8, 8]
        assert "Concat input 2 mismatch on dim 2" in cat.messages
        assert "Concat input 2 mismatch on dim 3" in cat.messages
        assert not context.has_errors


class TestFailureModes:
    """Errors stay local to the node that produced them."""

    def test_cycle_participants_are_errors(self):
        context = infer_shapes(cycle_graph())

        for node_id in ("a", "b"):
            result = context.results[node_id]
            assert result.status == "error"
            assert "Cycle detected" in result.messages
        assert context.results["in"].status == "valid"
        assert context.has_errors

    def test_below_minimum_inputs(self):
        graph = make_graph(
            [node("in", "Input", shape=[1, 4]), node("add", "Add"), node("out", "Output")],
            chain("in", "add", "out"),
        )
        add = infer_shapes(graph).results["add"]

        assert add.status == "error"
        assert "Requires at least 2 input(s)" in add.messages

    def test_disconnected_output(self):
        graph = make_graph([node("in", "Input", shape=[1, 4]), node("out", "Output")], [])
        out = infer_shapes(graph).results["out"]

        assert out.status == "error"
        assert out.shape is None
        assert "Requires at least 1 input(s)" in out.messages

    def test_edge_into_input_exceeds_maximum(self):
        graph = make_graph(
            [node("a", "Input", shape=[1, 4]), node("b", "Input", shape=[1, 4])],
            [edge("a", "b")],
        )
        b = infer_shapes(graph).results["b"]

        assert b.status == "error"
        assert "Supports up to 0 input(s)" in b.messages

    def test_unknown_kind(self):
        graph = make_graph(
            [node("in", "Input", shape=[1, 4]), node("odd", "Mystery"), node("out", "Output")],
            chain("in", "odd", "out"),
        )
        context = infer_shapes(graph)

        assert context.results["odd"].messages == ["Unknown node kind 'Mystery'"]
        assert context.results["odd"].status == "error"
        # downstream has an edge but no resolved input
        assert "Waiting for upstream nodes" in context.results["out"].messages

    def test_shape_error_message_is_reported(self):
        graph = make_graph(
            [node("in", "Input", shape=[1, 4]), node("conv", "Conv2d"), node("out", "Output")],
            chain("in", "conv", "out"),
        )
        conv = infer_shapes(graph).results["conv"]

        assert conv.status == "error"
        assert conv.messages[0].startswith("Conv2d expects 4D input")

    def test_non_positive_spatial_output(self):
        graph = make_graph(
            [
                node("in", "Input", shape=[1, 3, 2, 2]),
                node("conv", "Conv2d", in_channels=3, out_channels=4, kernel_size=5),
                node("out", "Output"),
            ],
            chain("in", "conv", "out"),
        )
        conv = infer_shapes(graph).results["conv"]

        assert conv.status == "error"
        assert "non-positive" in conv.messages[0]

    def test_unexpected_exception_is_contained(self):
        """A crashing shape function fails its node only."""

        def explode(inputs, params):
            raise RuntimeError("boom")

        registry = dict(REGISTRY)
        registry["Explode"] = NodeSpec(
            kind="Explode",
            description="Always fails",
            category="Test",
            params={},
            infer_shape=explode,
        )
        graph = make_graph(
            [
                node("in", "Input", shape=[1, 4]),
                node("bad", "Explode"),
                node("good", "ReLU"),
                node("out", "Output"),
            ],
            [edge("in", "bad"), edge("in", "good"), edge("good", "out")],
        )
        context = infer_shapes(graph, registry)

        assert context.results["bad"].status == "error"
        assert context.results["bad"].messages == ["Shape inference failed: boom"]
        assert context.results["good"].status == "valid"
        assert context.results["out"].shape == [1, 4]


class TestContext:
    """Trace, dtype and determinism."""

    def test_repeated_evaluation_is_identical(self):
        graph = get_template("residual")

        assert infer_shapes(graph) == infer_shapes(graph)

    def test_trace_lines(self):
        context = infer_shapes(conv_pool_graph())

        assert context.trace == [
            "Input in [1,3,32,32]",
            "in → conv [1,8,32,32]",
            "conv → pool [1,8,16,16]",
            "pool → out [1,8,16,16]",
        ]

    def test_trace_uses_labels_and_batch_marker(self):
        graph = make_graph(
            [node("in", "Input", "Image", shape=[-1, 4]), node("out", "Output", "Result")],
            chain("in", "out"),
        )

        assert infer_shapes(graph).trace == ["Input Image [B,4]", "Image → Result [B,4]"]

    def test_dtype_propagation(self):
        context = infer_shapes(get_template("lstm-classifier"))

        assert context.results["tokens"].dtype == "int64"
        assert context.results["embedding"].dtype == "float32"
        assert context.results["lstm"].dtype == "float32"
        assert context.results["lstm"].shape == [1, 128, 128]

    def test_invalid_input_dtype_uses_input_spec(self):
        graph = make_graph(
            [node("in", "Input", shape=[1, 4], dtype="complex64"), node("out", "Output")],
            chain("in", "out"),
        )

        assert infer_shapes(graph).results["in"].dtype == "float32"

    def test_escalate_keeps_most_severe(self):
        assert escalate("valid", "warning") == "warning"
        assert escalate("warning", "valid") == "warning"
        assert escalate("warning", "error") == "error"
        assert escalate("error", "warning") == "error"
