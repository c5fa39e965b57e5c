import asyncio
import stat
from pathlib import Path

import pytest
import yaml

from minifactory.config_loader import load_config
from minifactory.editor import (
    EditExecutor,
    EditRequest,
    build_command,
    build_env,
    wait_or_kill,
    write_model_settings,
)


class HangingProcess:
    """Never exits on its own; exits as soon as it is killed."""

    def __init__(self, kill_error: BaseException | None = None):
        self.killed = False
        self.kill_error = kill_error
        self._exited: asyncio.Event | None = None

    async def wait(self) -> int:
        if self._exited is None:
            self._exited = asyncio.Event()
        await self._exited.wait()
        return -9

    def kill(self) -> None:
        if self.kill_error is not None:
            raise self.kill_error
        self.killed = True
        if self._exited is not None:
            self._exited.set()


class FinishedProcess:
    def __init__(self, code: int):
        self.code = code
        self.killed = False

    async def wait(self) -> int:
        return self.code

    def kill(self) -> None:
        self.killed = True


def test_wait_or_kill_returns_exit_code():
    process = FinishedProcess(3)
    assert asyncio.run(wait_or_kill(process, timeout=1)) == 3
    assert not process.killed


def test_wait_or_kill_kills_on_timeout():
    process = HangingProcess()
    assert asyncio.run(wait_or_kill(process, timeout=0.05)) is None
    assert process.killed


def test_wait_or_kill_survives_kill_failures():
    process = HangingProcess(kill_error=ProcessLookupError())
    assert asyncio.run(wait_or_kill(process, timeout=0.05)) is None

    process = HangingProcess(kill_error=PermissionError("not permitted"))
    assert asyncio.run(wait_or_kill(process, timeout=0.05)) is None


def test_build_command(config):
    checkout = Path("/data/projects/demo")
    app = checkout / "mini-app"

    cmd = build_command(config, "add a footer", checkout, app)

    assert cmd[0] == "aider"
    assert cmd[cmd.index("--model") + 1] == "ollama_chat/gpt-oss:20b"
    assert cmd[cmd.index("--model-settings-file") + 1] == str(config.model_settings_path)
    assert cmd[cmd.index("--test-cmd") + 1] == (
        "npm i --cwd /data/projects/demo/mini-app --no-save && "
        "npm run --cwd /data/projects/demo/mini-app build"
    )
    assert cmd[cmd.index("--read") + 1] == "/data/projects/demo/documentation/index.md"
    assert cmd[cmd.index("--file") + 1] == "/data/projects/demo/mini-app/lib/metadata.ts"
    assert cmd[cmd.index("--edit-format") + 1] == "diff"
    for flag in (
        "--restore-chat-history",
        "--no-gitignore",
        "--auto-test",
        "--disable-playwright",
        "--no-detect-urls",
        "--no-suggest-shell-commands",
    ):
        assert flag in cmd
    assert cmd[-2:] == ["--message", "add a footer"]


def test_build_env_overrides_home_and_api_base(config):
    env = build_env(config, base={"PATH": "/usr/bin", "HOME": "/root"})
    assert env == {
        "PATH": "/usr/bin",
        "HOME": str(config.data_dir),
        "OLLAMA_API_BASE": "http://127.0.0.1:11434",
    }


def test_write_model_settings(config):
    path = write_model_settings(config)
    assert path == config.model_settings_path
    assert yaml.safe_load(path.read_text()) == [{"name": "ollama_chat/gpt-oss:20b"}]


# ---------------------------------------------------------------------------
# Against a stand-in aider script
# ---------------------------------------------------------------------------

def _fake_aider(tmp_path: Path, body: str) -> str:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    script = bin_dir / "aider"
    script.write_text(f"#!/bin/sh\n{body}\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return f"{bin_dir}/"


def _request(tmp_path: Path) -> EditRequest:
    checkout = tmp_path / "projects" / "demo"
    app = checkout / "mini-app"
    app.mkdir(parents=True)
    return EditRequest("demo", "add a footer", checkout, app)


def _executor(tmp_path: Path, aider_prefix: str, timeout: float = 10, capture: bool = False) -> EditExecutor:
    data_dir = tmp_path / "data"
    data_dir.mkdir(exist_ok=True)
    config = load_config(environ={"DATADIR": str(data_dir), "AIDER": aider_prefix})
    config.edit.timeout_seconds = timeout
    config.edit.capture_output = capture
    return EditExecutor(config)


def test_apply_completed(tmp_path):
    executor = _executor(tmp_path, _fake_aider(tmp_path, "exit 0"))
    outcome = asyncio.run(executor.apply(_request(tmp_path)))
    assert outcome.status == "completed"
    assert outcome.succeeded


def test_apply_non_zero_exit(tmp_path):
    executor = _executor(tmp_path, _fake_aider(tmp_path, "exit 3"))
    outcome = asyncio.run(executor.apply(_request(tmp_path)))
    assert outcome.status == "failed"
    assert outcome.exit_code == 3


def test_apply_times_out_and_kills(tmp_path):
    executor = _executor(tmp_path, _fake_aider(tmp_path, "exec sleep 30"), timeout=0.3)
    outcome = asyncio.run(executor.apply(_request(tmp_path)))
    assert outcome.status == "timed_out"
    assert not outcome.succeeded


def test_apply_failed_to_start(tmp_path):
    executor = _executor(tmp_path, str(tmp_path / "missing") + "/")
    outcome = asyncio.run(executor.apply(_request(tmp_path)))
    assert outcome.status == "failed_to_start"


def test_apply_runs_in_app_dir_and_captures_output_when_asked(tmp_path):
    executor = _executor(
        tmp_path,
        _fake_aider(tmp_path, 'pwd; echo "home=$HOME"; for last; do :; done; echo "message=$last"'),
        capture=True,
    )
    request = _request(tmp_path)

    outcome = asyncio.run(executor.apply(request))

    assert outcome.status == "completed"
    log = (executor.config.log_dir / "demo.aider.log").read_text()
    assert str(request.app_path) in log
    assert f"home={executor.config.data_dir}" in log
    assert "message=add a footer" in log


@pytest.mark.parametrize("capture", [False, True])
def test_output_is_not_required(tmp_path, capture):
    executor = _executor(tmp_path, _fake_aider(tmp_path, "echo noisy; echo noisier >&2"), capture=capture)
    assert asyncio.run(executor.apply(_request(tmp_path))).status == "completed"


def test_apply_with_nul_byte_in_instructions_fails_to_start(tmp_path):
    executor = _executor(tmp_path, _fake_aider(tmp_path, "exit 0"))
    request = _request(tmp_path)
    request.instructions = "add\x00footer"

    outcome = asyncio.run(executor.apply(request))

    assert outcome.status == "failed_to_start"
