from nodeflow.core.node import ChatMessage, FlowNode, InputParam, NodeData
from nodeflow.core.variables import (
    convert_chat_history_to_text,
    depends_on_live_input,
    get_input_variables,
    get_variable_value,
    replace_inputs_with_config,
    resolve_variables,
)


class Model:  # arbitrary object instance
    pass


def _built(node_id, instance):
    return FlowNode(id=node_id, data=NodeData(id=node_id, name="x", instance=instance))


HISTORY = [
    ChatMessage(role="userMessage", content="hi"),
    ChatMessage(role="apiMessage", content="hello there"),
]


def test_object_substitution_keeps_identity():
    model = Model()
    value = get_variable_value("{{llm_0.data.instance}}", [_built("llm_0", model)], "q")
    assert value is model


def test_string_substitution_with_accept_variable():
    text = get_variable_value(
        "Q: {{question}} | {{chat_history}} | {{n.data.instance}}",
        [_built("n", {"a": 1})],
        "why?",
        HISTORY,
        accept_variable=True,
    )
    assert text == 'Q: why? | Human: hi\nAssistant: hello there | {"a": 1}'


def test_question_not_substituted_without_accept_variable():
    assert get_variable_value("{{question}}", [], "why?") == "{{question}}"


def test_unknown_reference_left_untouched():
    assert get_variable_value("{{ghost.data.instance}}", [], "q") == "{{ghost.data.instance}}"
    assert get_variable_value("x {{ghost.data.instance}}", [], "q", accept_variable=True) == "x {{ghost.data.instance}}"


def test_resolve_variables_lists_and_copy():
    a, b = Model(), Model()
    data = NodeData(
        id="vs",
        name="store",
        inputs={"document": ["{{a.data.instance}}", "{{b.data.instance}}"], "topK": 4},
    )
    resolved = resolve_variables(data, {"a": _built("a", a), "b": _built("b", b)}, "q")
    assert resolved.inputs["document"] == [a, b]
    assert resolved.inputs["topK"] == 4
    # original untouched
    assert data.inputs["document"] == ["{{a.data.instance}}", "{{b.data.instance}}"]


def test_resolve_uses_accept_variable_flag():
    data = NodeData(
        id="t",
        name="textInput",
        inputs={"text": "say {{question}}"},
        input_params=[InputParam(name="text", accept_variable=True)],
    )
    assert resolve_variables(data, [], "hello").inputs["text"] == "say hello"


def _chain(node_id="llmChain_0", name="llmChain"):
    return NodeData(
        id=node_id,
        name=name,
        inputs={"systemMessage": "stored", "verbose": False, "secret": "s"},
        input_params=[
            InputParam(name="systemMessage"),
            InputParam(name="verbose", type="boolean"),
            InputParam(name="secret", overridable=False),
        ],
    )


def test_override_replaces_only_eligible_params():
    out = replace_inputs_with_config(_chain(), {"systemMessage": "new", "secret": "x", "unknown": 1})
    assert out.inputs["systemMessage"] == "new"
    assert out.inputs["secret"] == "s"
    assert "unknown" not in out.inputs


def test_override_boolean_strings():
    out = replace_inputs_with_config(_chain(), {"verbose": "true"})
    assert out.inputs["verbose"] is True
    out = replace_inputs_with_config(_chain(), {"verbose": "false"})
    assert out.inputs["verbose"] is False


def test_override_scoped_per_node_id():
    cfg = {"systemMessage": {"llmChain_0": "only me", "llmChain_1": "not me"}}
    assert replace_inputs_with_config(_chain("llmChain_0"), cfg).inputs["systemMessage"] == "only me"
    assert replace_inputs_with_config(_chain("llmChain_2"), cfg).inputs["systemMessage"] == "stored"


def test_override_none_returns_copy():
    data = _chain()
    out = replace_inputs_with_config(data, None)
    assert out == data and out is not data


def test_history_to_text():
    assert convert_chat_history_to_text(HISTORY) == "Human: hi\nAssistant: hello there"
    assert convert_chat_history_to_text([{"role": "userMessage", "content": "x"}]) == "Human: x"
    assert convert_chat_history_to_text(None) == ""


def test_prompt_variables():
    assert get_input_variables("Tell {name} about {topic}") == ["name", "topic"]
    assert get_input_variables("literal {{braces}} only") == []
    assert get_input_variables(42) == []


def test_depends_on_live_input():
    assert depends_on_live_input(NodeData(id="p", name="promptTemplate", inputs={"template": "Answer {question}"}))
    assert depends_on_live_input(NodeData(id="t", name="textInput", inputs={"text": "{{question}}"}))
    assert not depends_on_live_input(NodeData(id="t", name="textInput", inputs={"text": "hello"}))
