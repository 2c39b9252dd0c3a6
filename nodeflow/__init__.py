"""nodeflow: build and run node graph flows.

Main components:
* `FlowData`: Stored nodes and edges of one flow
* `FlowRunner`: Build, reuse and run a flow for one request
* `Executor`: Depth-ordered initialisation of a flow's nodes
* `FlowPool` / `CachePool`: Compiled flows and adapter caches
"""

# Version info
__version__ = "0.1.0"

# Core components
from nodeflow.core.node import FlowData, FlowEdge, FlowNode, IncomingInput, NodeData
from nodeflow.core.graph import build_graph, get_ending_nodes, starting_nodes_and_depth
from nodeflow.core.executor import Executor
from nodeflow.core.flow_pool import FlowPool
from nodeflow.core.cache_pool import CachePool
from nodeflow.core.runner import FlowRunner, RunResult

# Adapter registry
from nodeflow.adapters import AdapterRegistry, NodeAdapter, default_registry

# Utility re-exports
from nodeflow.config import RunnerConfig, load_config
from nodeflow.flow_loader import load_flow, parse_flow

# Export all important symbols
__all__ = [
    # Core classes
    "FlowData",
    "FlowEdge",
    "FlowNode",
    "NodeData",
    "IncomingInput",
    "Executor",
    "FlowPool",
    "CachePool",
    "FlowRunner",
    "RunResult",
    "AdapterRegistry",
    "NodeAdapter",
    "RunnerConfig",

    # Functions
    "build_graph",
    "get_ending_nodes",
    "starting_nodes_and_depth",
    "default_registry",
    "load_config",
    "load_flow",
    "parse_flow",
]
