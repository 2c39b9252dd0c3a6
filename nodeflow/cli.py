from __future__ import annotations

"""nodeflow Command Line Interface."""

import json
from pathlib import Path
from typing import Optional

import anyio
import jsonschema
import pydantic
import typer
import yaml
from rich.markup import escape
from rich.table import Table

from nodeflow.adapters.registry import default_registry
from nodeflow.config import RunnerConfig, config_from_env, load_config
from nodeflow.core.errors import NodeflowError
from nodeflow.core.graph import build_graph, get_ending_nodes, starting_nodes_and_depth
from nodeflow.core.node import IncomingInput
from nodeflow.core.runner import FlowRunner
from nodeflow.flow_loader import load_flow
from nodeflow.utils.ids import flow_id_from_path
from nodeflow.utils.logging import console, setup, show_dag_tree

app = typer.Typer(
    name="nodeflow",
    help="CLI for nodeflow: build and run node graph flows.",
    add_completion=False,
)

# reported as "Error: ..." with exit code 1 instead of a traceback
_USER_ERRORS = (NodeflowError, ValueError, jsonschema.ValidationError, pydantic.ValidationError, yaml.YAMLError)


def _config(config_file: Optional[Path], verbose: bool) -> RunnerConfig:
    cfg = load_config(config_file) if config_file else config_from_env()
    setup("debug" if verbose else cfg.log_level)
    return cfg


def _fail(exc: Exception) -> None:
    console.print(f"[bold red]Error:[/] {escape(str(exc))}")
    raise typer.Exit(code=1)


@app.command()
def adapters():
    """List all registered node adapters."""
    registry = default_registry()
    table = Table(title="Registered Adapters")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Category", style="magenta")
    table.add_column("Streaming", style="green")
    table.add_column("Reusable", style="yellow")
    table.add_column("Upsert", style="blue")

    for name, adapter in sorted(registry.items()):
        table.add_row(
            name,
            adapter.category,
            "yes" if adapter.streaming else "-",
            "yes" if adapter.reusable else "no",
            "yes" if adapter.supports_upsert else "-",
        )
    console.print(table)


@app.command()
def inspect(
    flow_file: Path = typer.Argument(..., help="Flow export (.json / .yml).", exists=True, file_okay=True, dir_okay=False, readable=True),
    target: Optional[str] = typer.Option(None, "--target", help="Node id to resolve (default: the ending node)."),
):
    """Show ending nodes, starting nodes and execution depths (no adapter is called)."""
    try:
        flow = load_flow(flow_file)
        graph = build_graph(flow.nodes, flow.edges)
        ending = get_ending_nodes(graph)
        console.print(f"Flow: [bold]{flow_file.name}[/] ({len(flow.nodes)} nodes, {len(flow.edges)} edges)")
        console.print(f"Ending nodes: {', '.join(ending) or '-'}")

        targets = [target] if target else ending
        for tgt in targets:
            starting, depth_queue = starting_nodes_and_depth(graph.dependencies, tgt)
            table = Table(title=f"Depths for {tgt}")
            table.add_column("Node", style="cyan")
            table.add_column("Depth", style="yellow", justify="right")
            table.add_column("Start", style="green")
            for node_id, depth in sorted(depth_queue.items(), key=lambda kv: kv[1]):
                table.add_row(node_id, str(depth), "yes" if node_id in starting else "")
            console.print(table)
        show_dag_tree(flow, target=target)
    except _USER_ERRORS as exc:
        _fail(exc)


@app.command()
def run(
    flow_file: Path = typer.Argument(..., help="Flow export (.json / .yml).", exists=True, file_okay=True, dir_okay=False, readable=True),
    question: Optional[str] = typer.Argument(None, help="Question to answer (default from config)."),
    override: Optional[str] = typer.Option(None, "--override", help="Override configuration as a JSON object."),
    stop_node: Optional[str] = typer.Option(None, "--stop-node", help="Ending node id when the flow has several."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Runner config YAML.", exists=True, dir_okay=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
):
    """Build the flow once and print the terminal node's answer."""
    try:
        cfg = _config(config_file, verbose)
        override_config = json.loads(override) if override else None
        flow = load_flow(flow_file)
        runner = FlowRunner(default_registry(), config=cfg)
        incoming = IncomingInput(
            question=question if question is not None else cfg.default_question,
            override_config=override_config,
            stop_node_id=stop_node,
        )
        result = anyio.run(runner.build_flow, flow_id_from_path(flow_file), flow, incoming)
    except _USER_ERRORS as exc:
        _fail(exc)
        return

    output = result.result
    if isinstance(output, dict) and set(output) == {"text"}:
        console.print(output["text"])
    else:
        console.print_json(json.dumps(output, default=str))


@app.command()
def upsert(
    flow_file: Path = typer.Argument(..., help="Flow export (.json / .yml).", exists=True, file_okay=True, dir_okay=False, readable=True),
    stop_node: Optional[str] = typer.Option(None, "--stop-node", help="Vector store node id when the flow has several."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Runner config YAML.", exists=True, dir_okay=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
):
    """Run the flow in upsert mode up to its vector store node."""
    try:
        cfg = _config(config_file, verbose)
        flow = load_flow(flow_file)
        runner = FlowRunner(default_registry(), config=cfg)
        incoming = IncomingInput(question=cfg.default_question, stop_node_id=stop_node)
        executed = anyio.run(runner.upsert_vector, flow_id_from_path(flow_file), flow, incoming)
    except _USER_ERRORS as exc:
        _fail(exc)
        return
    console.print(f"[bold green]Upserted[/] through {executed[-1]} ({len(executed)} node(s): {', '.join(executed)})")


if __name__ == "__main__":  # pragma: no cover
    app()
