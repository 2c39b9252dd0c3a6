from __future__ import annotations
"""Built-in thin adapters.

Small, dependency-free capabilities that let a flow run end to end: text
sources, prompt templates, chains, an in-memory cache, a buffer memory and a
keyword-matching vector store.  Model calls go through any instance that
exposes ``await apredict(prompt, context) -> str`` (see
:mod:`nodeflow.adapters.openai_chat`).
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from nodeflow.core.cache_pool import CachePool
from nodeflow.core.context import SharedContext
from nodeflow.core.node import ChatMessage, InputAnchor, InputParam, NodeData, OutputAnchor
from nodeflow.core.variables import convert_chat_history_to_text, get_input_variables, get_variable_value

from .base import NodeAdapter

__all__ = [
    "Document",
    "PromptTemplate",
    "InMemoryLLMCache",
    "BufferMemory",
    "KeywordRetriever",
    "TextInput",
    "PromptTemplateAdapter",
    "UpperCaseChain",
    "LLMChain",
    "InMemoryCache",
    "BufferMemoryAdapter",
    "PlainTextLoader",
    "InMemoryVectorStore",
    "RetrievalQAChain",
    "BUILTIN_ADAPTERS",
]

_WORD = re.compile(r"\w+")


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_json(value: Any) -> Dict[str, Any]:
    if not value:
        return {}
    if isinstance(value, dict):
        return dict(value)
    return json.loads(value)


# --------------------------------------------------------------------------- #
# Instances
# --------------------------------------------------------------------------- #

@dataclass
class Document:  # noqa: D101
    page_content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


@dataclass
class PromptTemplate:
    """Single-brace template; ``values`` maps variables to literals or ``{{question}}``."""

    template: str
    values: Dict[str, Any] = field(default_factory=dict)

    @property
    def input_variables(self) -> List[str]:
        return list(dict.fromkeys(get_input_variables(self.template)))

    def format(self, question: str = "", history: Optional[List[ChatMessage]] = None, **extra: Any) -> str:
        variables: Dict[str, Any] = {}
        for var in self.input_variables:
            if var in extra:
                variables[var] = extra[var]
            elif var in self.values:
                variables[var] = get_variable_value(
                    self.values[var], {}, question, history, accept_variable=True
                )
            elif var == "chat_history":
                variables[var] = convert_chat_history_to_text(history)
        unfilled = [v for v in self.input_variables if v not in variables]
        # a lone free variable receives the question
        if len(unfilled) == 1:
            variables[unfilled[0]] = question
        return self.template.format_map(_KeepMissing(variables))


class InMemoryLLMCache:
    """Prompt -> response cache stored in the pool under the flow's llm namespace."""

    def __init__(self, pool: CachePool, flow_id: str):
        self.pool = pool
        self.flow_id = flow_id

    def _store(self) -> Dict[Any, str]:
        store = self.pool.get_llm_cache(self.flow_id)
        if store is None:
            store = {}
            self.pool.add_llm_cache(self.flow_id, store)
        return store

    def lookup(self, prompt: str, llm_string: str) -> Optional[str]:
        return self._store().get((prompt, llm_string))

    def update(self, prompt: str, llm_string: str, value: str) -> None:
        self._store()[(prompt, llm_string)] = value


class BufferMemory:
    """Per-session message list kept in the cache pool."""

    def __init__(self, pool: CachePool, flow_id: str, session_id: Optional[str] = None, memory_key: str = "chat_history"):
        self.pool = pool
        self.flow_id = flow_id
        self.session_id = session_id
        self.memory_key = memory_key

    def _key(self, chat_id: str):
        return ("memory", self.flow_id, self.session_id or chat_id)

    def messages(self, chat_id: str) -> List[ChatMessage]:
        return list(self.pool.get(self._key(chat_id), []))

    def add_exchange(self, chat_id: str, question: str, answer: str) -> None:
        history = self.pool.setdefault(self._key(chat_id), [])
        history.append(ChatMessage(role="userMessage", content=question))
        history.append(ChatMessage(role="apiMessage", content=answer))

    def clear(self, chat_id: str) -> None:
        self.pool.delete(self._key(chat_id))


class KeywordRetriever:
    """Ranks stored documents by how many query words they contain."""

    def __init__(self, pool: CachePool, key: Any, top_k: int = 4):
        self.pool = pool
        self.key = key
        self.top_k = top_k

    @property
    def documents(self) -> List[Document]:
        return list(self.pool.get(self.key, []))

    def get_relevant_documents(self, query: str) -> List[Document]:
        words = {w.lower() for w in _WORD.findall(query)}
        scored = []
        for idx, doc in enumerate(self.documents):
            content = {w.lower() for w in _WORD.findall(doc.page_content)}
            score = len(words & content)
            if score:
                scored.append((-score, idx, doc))
        return [doc for _, _, doc in sorted(scored, key=lambda t: (t[0], t[1]))[: self.top_k]]


# --------------------------------------------------------------------------- #
# Adapters
# --------------------------------------------------------------------------- #

class TextInput(NodeAdapter):
    name = "textInput"
    label = "Text Input"
    category = "Utilities"
    description = "Literal text, optionally containing {{question}}"
    input_params = (InputParam(name="text", label="Text", accept_variable=True),)
    output_anchors = (OutputAnchor(name="textInput", label="Text", type="string"),)

    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        return node_data.inputs.get("text", "")


class PromptTemplateAdapter(NodeAdapter):
    name = "promptTemplate"
    label = "Prompt Template"
    category = "Prompts"
    description = "Single-brace prompt formatted when the chain runs"
    input_params = (
        InputParam(name="template", label="Template"),
        InputParam(name="promptValues", label="Format Prompt Values", type="json", optional=True, accept_variable=True),
    )
    output_anchors = (OutputAnchor(name="promptTemplate", label="PromptTemplate", type="PromptTemplate"),)

    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        return PromptTemplate(
            template=node_data.inputs.get("template", ""),
            values=_as_json(node_data.inputs.get("promptValues")),
        )


class UpperCaseChain(NodeAdapter):
    name = "upperCaseChain"
    label = "Upper Case Chain"
    category = "Chains"
    description = "Echoes its upstream value in upper case"
    input_anchors = (InputAnchor(name="input", label="Input", type="string"),)
    output_anchors = (OutputAnchor(name="upperCaseChain", label="UpperCaseChain", type="string"),)

    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        return node_data.inputs.get("input")

    async def run(self, node_data: NodeData, question: str, context: SharedContext) -> Any:
        value = node_data.inputs.get("input")
        if isinstance(value, PromptTemplate):
            value = value.format(question, context.history)
        return str(value).upper()


@dataclass
class _Chain:
    model: Any
    prompt: Optional[PromptTemplate] = None
    memory: Optional[BufferMemory] = None
    retriever: Optional[KeywordRetriever] = None


class LLMChain(NodeAdapter):
    name = "llmChain"
    label = "LLM Chain"
    category = "Chains"
    description = "Formats a prompt and sends it to a chat model"
    input_anchors = (
        InputAnchor(name="model", label="Language Model", type="BaseChatModel"),
        InputAnchor(name="prompt", label="Prompt", type="PromptTemplate"),
        InputAnchor(name="memory", label="Memory", type="BaseMemory", optional=True),
    )
    output_anchors = (OutputAnchor(name="llmChain", label="LLM Chain", type="LLMChain"),)
    streaming = True

    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        return _Chain(
            model=node_data.inputs["model"],
            prompt=node_data.inputs["prompt"],
            memory=node_data.inputs.get("memory"),
        )

    async def run(self, node_data: NodeData, question: str, context: SharedContext) -> Any:
        model = node_data.inputs["model"]
        prompt: PromptTemplate = node_data.inputs["prompt"]
        memory: Optional[BufferMemory] = node_data.inputs.get("memory")
        history = memory.messages(context.chat_id) if memory is not None else context.history
        text = await model.apredict(prompt.format(question, history), context)
        if memory is not None:
            memory.add_exchange(context.chat_id, question, text)
        return text


class InMemoryCache(NodeAdapter):
    name = "inMemoryCache"
    label = "InMemory Cache"
    category = "Cache"
    description = "Caches model responses per flow for the life of the process"
    output_anchors = (OutputAnchor(name="inMemoryCache", label="InMemoryCache", type="BaseCache"),)
    reusable = False

    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        return InMemoryLLMCache(context.cache_pool, context.flow_id)


class BufferMemoryAdapter(NodeAdapter):
    name = "bufferMemory"
    label = "Buffer Memory"
    category = "Memory"
    description = "Keeps the chat history of each session in memory"
    input_params = (
        InputParam(name="sessionId", label="Session Id", optional=True),
        InputParam(name="memoryKey", label="Memory Key", optional=True, default="chat_history"),
    )
    output_anchors = (OutputAnchor(name="bufferMemory", label="BufferMemory", type="BaseMemory"),)

    def _memory(self, node_data: NodeData, context: SharedContext) -> BufferMemory:
        return BufferMemory(
            context.cache_pool,
            context.flow_id,
            session_id=node_data.inputs.get("sessionId") or None,
            memory_key=node_data.inputs.get("memoryKey") or "chat_history",
        )

    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        return self._memory(node_data, context)

    async def get_chat_messages(self, node_data: NodeData, context: SharedContext) -> List[ChatMessage]:
        return self._memory(node_data, context).messages(context.chat_id)

    async def clear_session(self, node_data: NodeData, context: SharedContext) -> None:
        self._memory(node_data, context).clear(context.chat_id)


class PlainTextLoader(NodeAdapter):
    name = "plainTextLoader"
    label = "Plain Text"
    category = "Document Loaders"
    description = "Splits literal text into documents"
    input_params = (
        InputParam(name="text", label="Text"),
        InputParam(name="chunkSize", label="Chunk Size", type="number", optional=True, default=1000),
        InputParam(name="separator", label="Separator", optional=True, default="\n\n"),
        InputParam(name="metadata", label="Metadata", type="json", optional=True),
    )
    output_anchors = (OutputAnchor(name="plainTextLoader", label="Document", type="Document"),)

    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        text = node_data.inputs.get("text") or ""
        chunk_size = _as_int(node_data.inputs.get("chunkSize"), 1000)
        separator = node_data.inputs.get("separator") or "\n\n"
        metadata = _as_json(node_data.inputs.get("metadata"))

        chunks: List[str] = []
        current = ""
        for piece in (p.strip() for p in text.split(separator)):
            if not piece:
                continue
            if current and len(current) + len(separator) + len(piece) > chunk_size:
                chunks.append(current)
                current = piece
            else:
                current = f"{current}{separator}{piece}" if current else piece
        if current:
            chunks.append(current)
        return [Document(page_content=c, metadata=dict(metadata)) for c in chunks]


class InMemoryVectorStore(NodeAdapter):
    name = "inMemoryVectorStore"
    label = "In-Memory Vector Store"
    category = "Vector Stores"
    description = "Stores documents in the cache pool and retrieves them by keyword"
    input_params = (
        InputParam(name="storeKey", label="Store Key", optional=True),
        InputParam(name="topK", label="Top K", type="number", optional=True, default=4),
    )
    input_anchors = (InputAnchor(name="document", label="Document", type="Document", optional=True, list=True),)
    output_anchors = (OutputAnchor(name="retriever", label="Retriever", type="BaseRetriever"),)

    def _retriever(self, node_data: NodeData, context: SharedContext) -> KeywordRetriever:
        key = ("vectorstore", context.flow_id, node_data.inputs.get("storeKey") or node_data.id)
        return KeywordRetriever(context.cache_pool, key, _as_int(node_data.inputs.get("topK"), 4))

    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        return self._retriever(node_data, context)

    async def upsert(self, node_data: NodeData, context: SharedContext) -> Any:
        retriever = self._retriever(node_data, context)
        docs: List[Document] = []
        for item in node_data.inputs.get("document") or []:
            docs.extend(item if isinstance(item, list) else [item])
        context.cache_pool.setdefault(retriever.key, []).extend(docs)
        context.logger.info("Upserted %d document(s) into %s", len(docs), node_data.id)
        return retriever


_QA_TEMPLATE = """Use the following pieces of context to answer the question at the end.

{context}

Question: {question}
Helpful Answer:"""


class RetrievalQAChain(NodeAdapter):
    name = "retrievalQAChain"
    label = "Retrieval QA Chain"
    category = "Chains"
    description = "Answers the question from retrieved documents"
    input_params = (
        InputParam(name="returnSourceDocuments", label="Return Source Documents", type="boolean", optional=True),
    )
    input_anchors = (
        InputAnchor(name="model", label="Language Model", type="BaseChatModel"),
        InputAnchor(name="vectorStoreRetriever", label="Vector Store Retriever", type="BaseRetriever"),
    )
    output_anchors = (OutputAnchor(name="retrievalQAChain", label="RetrievalQAChain", type="RetrievalQAChain"),)
    streaming = True

    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        return _Chain(model=node_data.inputs["model"], retriever=node_data.inputs["vectorStoreRetriever"])

    async def run(self, node_data: NodeData, question: str, context: SharedContext) -> Any:
        retriever: KeywordRetriever = node_data.inputs["vectorStoreRetriever"]
        docs = retriever.get_relevant_documents(question)
        prompt = _QA_TEMPLATE.format(context="\n\n".join(d.page_content for d in docs), question=question)
        text = await node_data.inputs["model"].apredict(prompt, context)
        if node_data.inputs.get("returnSourceDocuments") in (True, "true"):
            return {
                "text": text,
                "sourceDocuments": [{"pageContent": d.page_content, "metadata": d.metadata} for d in docs],
            }
        return text


BUILTIN_ADAPTERS = (
    TextInput,
    PromptTemplateAdapter,
    UpperCaseChain,
    LLMChain,
    InMemoryCache,
    BufferMemoryAdapter,
    PlainTextLoader,
    InMemoryVectorStore,
    RetrievalQAChain,
)
