from contextlib import contextmanager

import anyio
import pytest

from nodeflow.adapters.base import NodeAdapter
from nodeflow.adapters.builtin import (
    BufferMemoryAdapter,
    InMemoryVectorStore,
    LLMChain,
    PlainTextLoader,
    PromptTemplateAdapter,
    RetrievalQAChain,
    TextInput,
    UpperCaseChain,
)
from nodeflow.adapters.registry import default_registry
from nodeflow.core.errors import (
    AdapterRunError,
    AmbiguousEndingNodeError,
    InvalidEndingNodeError,
    NoEndingNodeError,
)
from nodeflow.core.node import FlowData, FlowEdge, FlowNode, IncomingInput, NodeData, OutputAnchor
from nodeflow.core.runner import FlowRunner
from nodeflow.utils import events as ev


class EchoModel:
    async def apredict(self, prompt, context=None):
        if context is not None:
            for token in prompt.split():
                context.emit_token(token)
        return prompt


class FakeChat(NodeAdapter):
    name = "fakeChat"
    category = "Chat Models"
    output_anchors = (OutputAnchor(name="fakeChat"),)
    streaming = True

    async def initialize(self, node_data, context):
        return EchoModel()


class FailingChain(NodeAdapter):
    name = "failingChain"
    category = "Chains"

    async def initialize(self, node_data, context):
        return None

    async def run(self, node_data, question, context):
        raise ValueError("quota exceeded")


def _runner():
    registry = default_registry()
    registry.register(FakeChat)
    registry.register(FailingChain)
    return FlowRunner(registry)


def _node(adapter, node_id, **inputs):
    return FlowNode(id=node_id, data=adapter.node_template(node_id, **inputs))


def _edge(src, dst, anchor):
    return FlowEdge(source=src, target=dst, target_handle=f"{dst}-input-{anchor}-any")


def _run(fn, *args, **kw):
    return anyio.run(lambda: fn(*args, **kw))


@contextmanager
def _started():
    seen = []

    def _on(evt):
        seen.append(evt.node_id)

    ev.subscribe(ev.NodeInitStarted)(_on)
    try:
        yield seen
    finally:
        ev.unsubscribe(ev.NodeInitStarted, _on)


def _upper_flow(text="hello"):
    return FlowData(
        nodes=[_node(TextInput, "text_0", text=text), _node(UpperCaseChain, "chain_0")],
        edges=[_edge("text_0", "chain_0", "input")],
    )


# --------------------------------------------------------------------------- #
# Question mode
# --------------------------------------------------------------------------- #

def test_two_node_flow_returns_uppercase():
    runner = _runner()
    result = _run(runner.build_flow, "f", _upper_flow(), IncomingInput(question="anything"))
    assert result.result == {"text": "HELLO"}
    assert result.reused is False
    assert result.ending_node_id == "chain_0"
    assert len(result.chat_id) == 36


def test_second_identical_request_reuses_without_initializing():
    runner = _runner()
    flow = _upper_flow()
    _run(runner.build_flow, "f", flow, IncomingInput(question="one"))
    with _started() as seen:
        result = _run(runner.build_flow, "f", flow, IncomingInput(question="two", chatId="c1"))
    assert seen == []
    assert result.reused is True
    assert result.chat_id == "c1"
    assert result.result == {"text": "HELLO"}


def test_override_is_applied_and_changes_reuse():
    runner = _runner()
    flow = _upper_flow()
    first = _run(runner.build_flow, "f", flow, IncomingInput(question="q", overrideConfig={"text": "bye"}))
    assert first.result == {"text": "BYE"}
    again = _run(runner.build_flow, "f", flow, IncomingInput(question="q", overrideConfig={"text": "bye"}))
    assert again.reused and again.result == {"text": "BYE"}
    plain = _run(runner.build_flow, "f", flow, IncomingInput(question="q"))
    assert not plain.reused and plain.result == {"text": "HELLO"}


def test_invalidate_forces_rebuild():
    runner = _runner()
    _run(runner.build_flow, "f", _upper_flow(), IncomingInput(question="q"))
    runner.invalidate("f")
    result = _run(runner.build_flow, "f", _upper_flow("changed"), IncomingInput(question="q"))
    assert not result.reused
    assert result.result == {"text": "CHANGED"}


def test_two_ending_nodes_without_hint_is_ambiguous():
    flow = FlowData(
        nodes=[_node(TextInput, "a", text="hello"), _node(UpperCaseChain, "b"), _node(UpperCaseChain, "c")],
        edges=[_edge("a", "b", "input"), _edge("a", "c", "input")],
    )
    runner = _runner()
    with _started() as seen:
        with pytest.raises(AmbiguousEndingNodeError) as info:
            _run(runner.build_flow, "f", flow, IncomingInput(question="q"))
    assert seen == []
    assert info.value.candidates == ["b", "c"]
    assert "f" not in runner.flow_pool

    picked = _run(runner.build_flow, "f", flow, IncomingInput(question="q", stopNodeId="c"))
    assert picked.ending_node_id == "c"


def test_reuse_respects_requested_stop_node():
    flow = FlowData(
        nodes=[
            _node(TextInput, "a", text="hello"),
            _node(UpperCaseChain, "b"),
            _node(TextInput, "c", text="world"),
            _node(UpperCaseChain, "d"),
        ],
        edges=[_edge("a", "b", "input"), _edge("c", "d", "input")],
    )
    runner = _runner()
    first = _run(runner.build_flow, "f", flow, IncomingInput(question="q", stopNodeId="b"))
    assert first.ending_node_id == "b" and first.result == {"text": "HELLO"}

    other = _run(runner.build_flow, "f", flow, IncomingInput(question="q", stopNodeId="d"))
    assert not other.reused
    assert other.ending_node_id == "d"
    assert other.result == {"text": "WORLD"}

    again = _run(runner.build_flow, "f", flow, IncomingInput(question="q", stopNodeId="d"))
    assert again.reused and again.ending_node_id == "d"
    assert runner.flow_pool.get("f").stop_node_id == "d"


def test_ending_node_validation():
    runner = _runner()
    with pytest.raises(NoEndingNodeError):
        flow = FlowData(nodes=[_node(TextInput, "a", text="x"), _node(TextInput, "b", text="y")])
        _run(runner.build_flow, "f", flow, IncomingInput())

    with pytest.raises(InvalidEndingNodeError, match="must be one of"):
        _run(runner.build_flow, "f", FlowData(nodes=[_node(TextInput, "a", text="x")]), IncomingInput())

    flow = _upper_flow()
    flow.nodes[1].data.outputs = {"output": "outputPrediction"}
    with pytest.raises(InvalidEndingNodeError, match="not valid"):
        _run(runner.build_flow, "f", flow, IncomingInput())

    with pytest.raises(InvalidEndingNodeError):
        _run(runner.build_flow, "f", _upper_flow(), IncomingInput(stopNodeId="ghost"))


def test_terminal_failure_is_wrapped():
    flow = FlowData(
        nodes=[_node(TextInput, "a", text="x"), _node(FailingChain, "bad")],
        edges=[FlowEdge(source="a", target="bad")],
    )
    with pytest.raises(AdapterRunError) as info:
        _run(_runner().build_flow, "f", flow, IncomingInput(question="q"))
    assert info.value.node_id == "bad"
    assert isinstance(info.value.__cause__, ValueError)


# --------------------------------------------------------------------------- #
# Memory and streaming
# --------------------------------------------------------------------------- #

def _chat_flow():
    return FlowData(
        nodes=[
            _node(PromptTemplateAdapter, "prompt", template="{chat_history}\nQ: {question}"),
            _node(FakeChat, "model"),
            _node(BufferMemoryAdapter, "mem"),
            _node(LLMChain, "chain"),
        ],
        edges=[
            _edge("prompt", "chain", "prompt"),
            _edge("model", "chain", "model"),
            _edge("mem", "chain", "memory"),
        ],
    )


def test_memory_feeds_history_and_can_be_cleared():
    runner = _runner()
    flow = _chat_flow()
    _run(runner.build_flow, "f", flow, IncomingInput(question="first", chatId="s1"))
    second = _run(runner.build_flow, "f", flow, IncomingInput(question="second", chatId="s1"))
    assert second.reused is False  # prompt reads the question
    assert "Human: first" in second.result["text"]

    cleared = _run(runner.clear_session_memory, flow, "s1", flow_id="f")
    assert cleared == ["mem"]
    third = _run(runner.build_flow, "f", flow, IncomingInput(question="third", chatId="s1"))
    assert "Human: first" not in third.result["text"]


def test_streaming_tokens_are_forwarded():
    runner = _runner()
    tokens = []
    result = _run(
        runner.build_flow, "f", _chat_flow(), IncomingInput(question="stream me", streaming=True), stream=tokens.append
    )
    assert result.streaming is True
    assert tokens[-2:] == ["stream", "me"]


def test_stream_validity():
    runner = _runner()
    flow = _chat_flow()
    chain = flow.get_node("chain").data
    assert runner.is_flow_valid_for_stream(flow, chain)
    assert not runner.is_flow_valid_for_stream(_upper_flow(), _upper_flow().nodes[1].data)

    flow.nodes.append(FlowNode(id="parser", data=NodeData(id="parser", name="x", category="Output Parsers")))
    assert not runner.is_flow_valid_for_stream(flow, chain)


# --------------------------------------------------------------------------- #
# Upsert mode
# --------------------------------------------------------------------------- #

def _qa_flow():
    return FlowData(
        nodes=[
            _node(
                PlainTextLoader,
                "loader",
                text="Paris is the capital of France.\n\nBerlin is in Germany.",
                chunkSize=20,
            ),
            _node(InMemoryVectorStore, "store"),
            _node(FakeChat, "model"),
            _node(RetrievalQAChain, "qa"),
        ],
        edges=[
            _edge("loader", "store", "document"),
            _edge("store", "qa", "vectorStoreRetriever"),
            _edge("model", "qa", "model"),
        ],
    )


def test_upsert_stops_at_vector_store_and_never_runs_terminal():
    runner = _runner()
    flow = _qa_flow()
    with _started() as seen:
        executed = _run(runner.upsert_vector, "f", flow, IncomingInput())
    assert executed == ["loader", "store"]
    assert seen == ["loader", "store"]
    entry = runner.flow_pool.get("f")
    assert entry.ending_node_data is None
    assert [n.id for n in entry.starting_nodes] == ["loader"]

    answer = _run(runner.build_flow, "f", flow, IncomingInput(question="What is the capital of France?"))
    assert answer.reused is False
    assert "Paris is the capital of France." in answer.result["text"]


def test_upsert_needs_a_single_vector_store():
    flow = _qa_flow()
    flow.nodes.append(_node(InMemoryVectorStore, "store_2"))
    with pytest.raises(AmbiguousEndingNodeError):
        _run(_runner().upsert_vector, "f", flow, IncomingInput())
    executed = _run(_runner().upsert_vector, "f", flow, IncomingInput(stopNodeId="store"))
    assert executed[-1] == "store"

    with pytest.raises(NoEndingNodeError):
        _run(_runner().upsert_vector, "f", _upper_flow(), IncomingInput())
