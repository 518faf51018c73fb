from __future__ import annotations

import json
import os
import stat
import sys
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner
from fastapi.testclient import TestClient

from autopilot import __version__
from autopilot.main import autopilot

pytestmark = [
    allure.epic("CLI"),
    allure.feature("Autopilot Commands"),
]

_FAKE_CODEX = r'''
import json
import sys
import uuid
from pathlib import Path

args = sys.argv[1:]
last_message = Path(args[args.index("--output-last-message") + 1])
prompt = args[-1]
thread_id = args[-2] if args[1] == "resume" else "thread-" + uuid.uuid4().hex[:8]
print(json.dumps({"type": "thread.started", "thread_id": thread_id}), flush=True)

if prompt.startswith("use the workflow-generator skill."):
    reply = json.dumps({
        "version": 1,
        "id": "cli-workflow",
        "steps": [
            {"id": "research", "type": "agent.run", "goal": "use the research skill."},
            {
                "id": "implement",
                "type": "agent.run",
                "goal": "use the implement skill.",
                "dependsOn": ["research"],
            },
        ],
    })
elif prompt.startswith("use the reviewer skill."):
    reply = "Verdict:\n" + json.dumps({"done": True, "summary": "Feature shipped"})
else:
    reply = "Done: " + prompt.splitlines()[0]
print(json.dumps({"type": "turn.completed", "usage": {"input_tokens": 1, "output_tokens": 1}}))
last_message.write_text(reply, encoding="utf-8")
'''

_ENV_NAMES = (
    "AUTOPILOT_ADAPTER",
    "AUTOPILOT_MODEL",
    "AUTOPILOT_EFFORT",
    "AUTOPILOT_UNSAFE",
    "AUTOPILOT_SEARCH",
    "AUTOPILOT_CODEX_COMMAND",
    "AUTOPILOT_CLAUDE_COMMAND",
    "AUTOPILOT_CONCURRENCY",
    "AUTOPILOT_MAX_ITERATIONS",
    "AUTOPILOT_OUT_DIR",
    "AUTOPILOT_OUTPUT_TRUNCATE_CHARS",
    "AUTOPILOT_VIEWER_HOST",
    "AUTOPILOT_VIEWER_PORT",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path: Path) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CODEX_HOME", str(tmp_path / "codex-home"))


def _write_fake_codex(bin_dir: Path) -> None:
    implementation = bin_dir / "codex_impl.py"
    implementation.write_text(_FAKE_CODEX.strip() + "\n", "utf-8")
    if os.name == "nt":
        launcher = bin_dir / "codex.cmd"
        launcher.write_text(
            f'@echo off\r\n"{sys.executable}" "{implementation}" %*\r\n',
            "utf-8",
        )
    else:
        launcher = bin_dir / "codex"
        launcher.write_text(
            f'#!/usr/bin/env sh\nexec "{sys.executable}" "{implementation}" "$@"\n',
            "utf-8",
        )
        launcher.chmod(launcher.stat().st_mode | stat.S_IXUSR)


def _use_scripted_adapter(monkeypatch, adapter) -> None:
    monkeypatch.setattr(
        "autopilot.controllers.create_adapter",
        lambda _name, _settings: adapter,
    )


def test_version_option() -> None:
    result = CliRunner().invoke(autopilot, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_help_lists_commands() -> None:
    result = CliRunner().invoke(autopilot, ["--help"])

    assert result.exit_code == 0
    for command in ("run", "runs", "resume", "enrich", "viewer"):
        assert command in result.output


def test_run_with_fake_codex_end_to_end(tmp_path: Path, monkeypatch) -> None:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    _write_fake_codex(bin_dir)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    out_dir = tmp_path / "runs" / "autopilot"

    result = CliRunner().invoke(
        autopilot,
        ["run", "Add", "a", "feature", "--out-dir", str(out_dir), "--max-iterations", "2"],
    )

    assert result.exit_code == 0, result.output
    assert "Status: completed" in result.output
    assert "Summary: Feature shipped" in result.output
    assert "Iterations: 1" in result.output
    (run_dir,) = [path for path in out_dir.iterdir() if path.is_dir()]
    manifest = json.loads((run_dir / "manifest.json").read_text("utf-8"))
    assert manifest["task"] == "Add a feature"
    assert manifest["options"]["adapter"] == "codex"
    assert [item["label"] for item in manifest["execs"]] == [
        "workflow-gen:iteration-1",
        "step:research",
        "step:implement",
        "completion-check:iteration-1",
    ]
    research_output = run_dir / manifest["execs"][1]["artifacts"]["outputTxt"]
    assert research_output.read_text("utf-8") == "Done: use the research skill."
    assert manifest["execs"][1]["artifacts"]["eventsJsonl"].endswith("events.jsonl")


def test_run_failure_exits_nonzero(tmp_path: Path, monkeypatch, scripted_adapter) -> None:
    _use_scripted_adapter(monkeypatch, scripted_adapter(generate=lambda _request: "no json"))

    result = CliRunner().invoke(
        autopilot,
        ["run", "Do it", "--out-dir", str(tmp_path / "runs")],
    )

    assert result.exit_code == 1
    assert "Status: error" in result.output
    assert "Error: Invalid JSON: could not parse workflow" in result.output
    assert "Autopilot run failed." in result.output


def test_runs_lists_finished_runs(tmp_path: Path, monkeypatch, scripted_adapter) -> None:
    out_dir = tmp_path / "runs"
    workflow = {"version": 1, "id": "wf", "steps": [{"id": "a", "goal": "use the a skill."}]}
    _use_scripted_adapter(
        monkeypatch,
        scripted_adapter(generate=lambda _request: json.dumps(workflow)),
    )
    runner = CliRunner()

    empty = runner.invoke(autopilot, ["runs", "--out-dir", str(out_dir)])
    runner.invoke(autopilot, ["run", "Do it", "--out-dir", str(out_dir)])
    listed = runner.invoke(autopilot, ["runs", "--out-dir", str(out_dir)])

    assert f"No runs found in {out_dir}" in empty.output
    assert listed.exit_code == 0
    assert "Runs: 1" in listed.output
    assert "status=completed" in listed.output
    assert "execs=3" in listed.output


def test_resume_records_follow_up(tmp_path: Path, monkeypatch, scripted_adapter) -> None:
    out_dir = tmp_path / "runs"
    workflow = {"version": 1, "id": "wf", "steps": [{"id": "a", "goal": "use the a skill."}]}
    adapter = scripted_adapter(
        generate=lambda _request: json.dumps(workflow),
        step=lambda request: f"reply to {request.prompt}",
    )
    _use_scripted_adapter(monkeypatch, adapter)
    runner = CliRunner()
    runner.invoke(autopilot, ["run", "Do it", "--out-dir", str(out_dir)])
    (run_dir,) = [path for path in out_dir.iterdir() if path.is_dir()]

    result = runner.invoke(
        autopilot,
        ["resume", run_dir.name, "thread-2", "add", "docs", "--out-dir", str(out_dir)],
    )

    assert result.exit_code == 0, result.output
    assert "Exec: exec-004" in result.output
    assert "Thread: thread-2" in result.output
    assert "reply to add docs" in result.output


def test_resume_unknown_run_fails(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        autopilot,
        ["resume", "autopilot-missing", "thread-1", "hi", "--out-dir", str(tmp_path)],
    )

    assert result.exit_code == 1
    assert "Run not found" in result.output
    assert "Resume failed." in result.output


def test_enrich_reports_graph_and_warnings(tmp_path: Path, monkeypatch, scripted_adapter) -> None:
    out_dir = tmp_path / "runs"
    workflow = {"version": 1, "id": "wf", "steps": [{"id": "a", "goal": "use the a skill."}]}
    _use_scripted_adapter(
        monkeypatch,
        scripted_adapter(generate=lambda _request: json.dumps(workflow)),
    )
    runner = CliRunner()
    runner.invoke(autopilot, ["run", "Do it", "--out-dir", str(out_dir)])
    (run_dir,) = [path for path in out_dir.iterdir() if path.is_dir()]

    result = runner.invoke(
        autopilot,
        [
            "enrich",
            run_dir.name,
            "--out-dir",
            str(out_dir),
            "--codex-home",
            str(tmp_path / "empty-home"),
        ],
    )

    assert result.exit_code == 0, result.output
    assert f"Run {run_dir.name}: nodes=3 edges=2" in result.output
    assert "Warning: Transcript not found for threadId=thread-1" in result.output


def test_enrich_unknown_run_fails(tmp_path: Path) -> None:
    result = CliRunner().invoke(autopilot, ["enrich", "nope", "--out-dir", str(tmp_path)])

    assert result.exit_code == 1
    assert "Run not found" in result.output


def test_viewer_serves_from_nearest_runs_dir(tmp_path: Path, monkeypatch) -> None:
    (tmp_path / "runs" / "autopilot").mkdir(parents=True)
    nested = tmp_path / "pkg"
    nested.mkdir()
    monkeypatch.chdir(nested)
    served: dict[str, object] = {}

    def fake_run(app, host: str, port: int) -> None:
        served.update(app=app, host=host, port=port)

    monkeypatch.setattr("autopilot.main.uvicorn.run", fake_run)

    result = CliRunner().invoke(autopilot, ["viewer", "--port", "5050"])

    assert result.exit_code == 0, result.output
    assert served["host"] == "127.0.0.1"
    assert served["port"] == 5050
    assert "Run viewer listening on http://127.0.0.1:5050" in result.output
    assert f"Runs dir: {tmp_path / 'runs' / 'autopilot'}" in result.output


def test_viewer_out_dir_selects_runs(tmp_path: Path, monkeypatch) -> None:
    runs_dir = tmp_path / "custom-runs"
    run_dir = runs_dir / "autopilot-x"
    run_dir.mkdir(parents=True)
    manifest = {"runId": "autopilot-x", "startedAt": "2025-01-01T00:00:00.000Z"}
    (run_dir / "manifest.json").write_text(json.dumps(manifest), "utf-8")
    monkeypatch.chdir(tmp_path)
    served: dict[str, object] = {}
    monkeypatch.setattr(
        "autopilot.main.uvicorn.run",
        lambda app, host, port: served.update(app=app),
    )

    result = CliRunner().invoke(autopilot, ["viewer", "--out-dir", str(runs_dir)])

    assert result.exit_code == 0, result.output
    assert f"Runs dir: {runs_dir}" in result.output
    runs = TestClient(served["app"]).get("/api/runs").json()
    assert [run["runId"] for run in runs] == ["autopilot-x"]
