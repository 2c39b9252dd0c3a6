from __future__ import annotations

"""Runner configuration.

Defaults match what a chat flow server expects.  Values may come from a
YAML file (validated against ``_SCHEMA``) and from ``NODEFLOW_*``
environment variables, which take precedence.

```yaml
ending_categories: [Chains, Agents]
vector_store_category: Vector Stores
parallel_init: false
log_level: info
```
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from jsonschema import validate as _js_validate

__all__ = ["RunnerConfig", "load_config", "config_from_env"]

_TRUE = {"1", "true", "yes", "on"}


@dataclass
class RunnerConfig:  # noqa: D101 – self-documenting via fields
    # categories a terminal node may belong to
    ending_categories: List[str] = field(default_factory=lambda: ["Chains", "Agents"])
    vector_store_category: str = "Vector Stores"
    # storage nodes whose label contains one of these are not upsert targets
    vector_store_label_excludes: List[str] = field(default_factory=lambda: ["Upsert", "Load Existing"])
    model_categories: List[str] = field(default_factory=lambda: ["Chat Models", "LLMs"])
    output_parser_category: str = "Output Parsers"
    memory_category: str = "Memory"
    parallel_init: bool = False
    log_level: str = "info"
    default_question: str = "hello"

    # Additional, deployment-specific keys
    extra: Dict[str, Any] = field(default_factory=dict)

    # -------------------------------------------------- #
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunnerConfig":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known and k != "extra"}
        kwargs["extra"] = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(path: str | Path, *, env: Optional[Dict[str, str]] = None) -> RunnerConfig:  # noqa: D401
    """Load a :class:`RunnerConfig` from YAML at *path*, then apply env overrides."""
    data = yaml.safe_load(Path(path).read_text()) or {}
    _js_validate(instance=data, schema=_SCHEMA)
    return _apply_env(RunnerConfig.from_dict(data), env)


def config_from_env(env: Optional[Dict[str, str]] = None) -> RunnerConfig:
    """Defaults plus ``NODEFLOW_LOG_LEVEL`` / ``NODEFLOW_PARALLEL_INIT``."""
    return _apply_env(RunnerConfig(), env)


def _apply_env(cfg: RunnerConfig, env: Optional[Dict[str, str]]) -> RunnerConfig:
    env = os.environ if env is None else env
    if env.get("NODEFLOW_LOG_LEVEL"):
        cfg.log_level = env["NODEFLOW_LOG_LEVEL"].lower()
    if env.get("NODEFLOW_PARALLEL_INIT"):
        cfg.parallel_init = env["NODEFLOW_PARALLEL_INIT"].lower() in _TRUE
    return cfg


# --------------------------------------------------------------------------- #
# Minimal JSON Schema for config files
# --------------------------------------------------------------------------- #

_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "ending_categories": {"type": "array", "items": {"type": "string"}, "minItems": 1},
        "vector_store_category": {"type": "string"},
        "vector_store_label_excludes": {"type": "array", "items": {"type": "string"}},
        "model_categories": {"type": "array", "items": {"type": "string"}},
        "output_parser_category": {"type": "string"},
        "memory_category": {"type": "string"},
        "parallel_init": {"type": "boolean"},
        "log_level": {"enum": ["debug", "info", "warning", "error"]},
        "default_question": {"type": "string"},
    },
}
