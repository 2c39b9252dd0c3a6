from pathlib import Path

from typer.testing import CliRunner

from nodeflow.cli import app

DATA = Path(__file__).parent / "data"

runner = CliRunner()


def test_adapters_lists_builtins():
    result = runner.invoke(app, ["adapters"])
    assert result.exit_code == 0
    assert "upperCaseChain" in result.output
    assert "chatOpenAI" in result.output


def test_inspect_shows_depths():
    result = runner.invoke(app, ["inspect", str(DATA / "upper_flow.json")])
    assert result.exit_code == 0
    assert "upperCaseChain_0" in result.output
    assert "Execution DAG" in result.output


def test_run_prints_answer():
    result = runner.invoke(app, ["run", str(DATA / "upper_flow.json"), "anything"])
    assert result.exit_code == 0, result.output
    assert "HELLO" in result.output


def test_run_with_override():
    result = runner.invoke(app, ["run", str(DATA / "upper_flow.json"), "q", "--override", '{"text": "bye"}'])
    assert result.exit_code == 0, result.output
    assert "BYE" in result.output


def test_run_bad_override_fails():
    result = runner.invoke(app, ["run", str(DATA / "upper_flow.json"), "q", "--override", "{nope"])
    assert result.exit_code == 1


def test_upsert_stops_at_store():
    result = runner.invoke(app, ["upsert", str(DATA / "qa_flow.yml")])
    assert result.exit_code == 0, result.output
    assert "store_0" in result.output


def test_run_invalid_flow_file_fails_cleanly(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text('{"edges": []}')
    result = runner.invoke(app, ["run", str(bad), "q"])
    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "nodes" in result.output


def test_upsert_unknown_suffix_and_bad_config_fail_cleanly(tmp_path):
    flow = tmp_path / "flow.txt"
    flow.write_text("{}")
    result = runner.invoke(app, ["upsert", str(flow)])
    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)

    cfg = tmp_path / "config.yml"
    cfg.write_text("parallel_init: maybe\n")
    result = runner.invoke(app, ["run", str(DATA / "upper_flow.json"), "q", "--config", str(cfg)])
    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
