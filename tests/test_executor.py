import anyio
import pytest

from nodeflow.adapters.base import NodeAdapter
from nodeflow.adapters.registry import AdapterRegistry
from nodeflow.core.errors import AdapterInitError, GraphIntegrityError, InvalidEndingNodeError, MissingInputError
from nodeflow.core.executor import Executor, instance_ref
from nodeflow.core.graph import build_graph, starting_nodes_and_depth
from nodeflow.core.node import FlowEdge, FlowNode, InputAnchor, InputParam, NodeData, OutputAnchor
from nodeflow.utils import events as ev

CALLS = []


class Source(NodeAdapter):
    name = "source"
    category = "Utilities"
    input_params = (InputParam(name="value"),)

    async def initialize(self, node_data, context):
        CALLS.append(("init", node_data.id))
        return node_data.inputs["value"]


class Join(NodeAdapter):
    name = "join"
    category = "Chains"
    input_anchors = (InputAnchor(name="parts", list=True),)
    output_anchors = (OutputAnchor(name="join"),)

    async def initialize(self, node_data, context):
        CALLS.append(("init", node_data.id))
        return "+".join(str(p) for p in node_data.inputs["parts"])


class Store(NodeAdapter):
    name = "store"
    category = "Vector Stores"
    input_anchors = (InputAnchor(name="document", optional=True, list=True),)

    async def initialize(self, node_data, context):
        CALLS.append(("init", node_data.id))
        return "retriever"

    async def upsert(self, node_data, context):
        CALLS.append(("upsert", node_data.id))
        return list(node_data.inputs.get("document") or [])


class Broken(NodeAdapter):
    name = "broken"
    input_params = (InputParam(name="value", optional=True),)

    async def initialize(self, node_data, context):
        raise RuntimeError("boom")


def _registry():
    registry = AdapterRegistry()
    for cls in (Source, Join, Store, Broken):
        registry.register(cls)
    return registry


@pytest.fixture(autouse=True)
def _reset():
    CALLS.clear()


def _source(node_id, value):
    return FlowNode(id=node_id, data=Source.node_template(node_id, value=value))


def _edge(src, dst, anchor):
    return FlowEdge(source=src, target=dst, target_handle=f"{dst}-input-{anchor}-string")


def _build(nodes, edges, target, **kw):
    graph = build_graph(nodes, edges)
    starting, depth = starting_nodes_and_depth(graph.dependencies, target)
    executor = Executor(_registry(), parallel=kw.pop("parallel", False))
    return anyio.run(lambda: executor.build(starting, nodes, edges, graph, depth, **kw))


def test_diamond_runs_each_node_once_in_depth_order():
    nodes = [
        _source("a", "A"),
        _source("b", "B"),
        FlowNode(id="j", data=Join.node_template("j")),
    ]
    edges = [_edge("a", "j", "parts"), _edge("b", "j", "parts")]
    built = _build(nodes, edges, "j", question="q")

    assert [n.id for n in built] == ["a", "b", "j"]
    assert CALLS == [("init", "a"), ("init", "b"), ("init", "j")]
    assert built[-1].data.instance == "A+B"
    # placeholders are kept on the built copy, the caller's nodes are untouched
    assert built[-1].data.inputs["parts"] == [instance_ref("a"), instance_ref("b")]
    assert nodes[2].data.instance is None


def test_parallel_level_gives_same_result():
    nodes = [_source("a", "A"), _source("b", "B"), FlowNode(id="j", data=Join.node_template("j"))]
    edges = [_edge("a", "j", "parts"), _edge("b", "j", "parts")]
    built = _build(nodes, edges, "j", parallel=True)
    assert built[-1].data.instance == "A+B"
    assert sorted(CALLS[:2]) == [("init", "a"), ("init", "b")]


def test_override_applied_before_initialize():
    nodes = [_source("a", "stored"), FlowNode(id="j", data=Join.node_template("j"))]
    built = _build(nodes, [_edge("a", "j", "parts")], "j", override_config={"value": "override"})
    assert built[0].data.instance == "override"


def test_upsert_stops_at_storage_node():
    nodes = [
        _source("doc", "text"),
        FlowNode(id="vs", data=Store.node_template("vs")),
        FlowNode(id="j", data=Join.node_template("j")),
    ]
    edges = [_edge("doc", "vs", "document"), _edge("vs", "j", "parts")]
    graph = build_graph(nodes, edges)
    starting, depth = starting_nodes_and_depth(graph.dependencies, "j")
    executor = Executor(_registry())

    built = anyio.run(
        lambda: executor.build(starting, nodes, edges, graph, depth, is_upsert=True, stop_node_id="vs")
    )
    assert [n.id for n in built] == ["doc", "vs"]
    assert CALLS == [("init", "doc"), ("upsert", "vs")]
    assert built[-1].data.instance == ["text"]


def test_upsert_into_node_without_upsert_is_rejected():
    nodes = [_source("a", "A"), FlowNode(id="j", data=Join.node_template("j"))]
    edges = [_edge("a", "j", "parts")]
    with pytest.raises(InvalidEndingNodeError, match="does not support upsert"):
        _build(nodes, edges, "j", is_upsert=True, stop_node_id="j")
    with pytest.raises(InvalidEndingNodeError):
        _build(nodes, edges, "j", is_upsert=True, stop_node_id="ghost")
    assert CALLS == []


def test_failure_aborts_traversal():
    nodes = [
        FlowNode(id="bad", data=Broken.node_template("bad")),
        FlowNode(id="j", data=Join.node_template("j")),
    ]
    failed = []
    ev.subscribe(ev.NodeInitFailed)(failed.append)
    try:
        with pytest.raises(AdapterInitError) as info:
            _build(nodes, [_edge("bad", "j", "parts")], "j")
    finally:
        ev.unsubscribe(ev.NodeInitFailed, failed.append)
    assert info.value.node_id == "bad"
    assert isinstance(info.value.__cause__, RuntimeError)
    assert CALLS == []
    assert failed and failed[0].node_id == "bad"


def test_missing_required_input_raises_before_adapter():
    nodes = [FlowNode(id="a", data=NodeData(id="a", name="source", input_params=[InputParam(name="value")]))]
    with pytest.raises(MissingInputError, match="value"):
        _build(nodes, [], "a")
    assert CALLS == []


def test_depth_queue_must_match_nodes():
    nodes = [_source("a", "A")]
    graph = build_graph(nodes, [])
    executor = Executor(_registry())
    with pytest.raises(GraphIntegrityError):
        anyio.run(lambda: executor.build(["a"], nodes, [], graph, {"a": 0, "ghost": 1}))
    with pytest.raises(GraphIntegrityError):
        anyio.run(lambda: executor.build(["a"], nodes, [], graph, {"a": 1}))
