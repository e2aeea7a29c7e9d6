from __future__ import annotations

import itertools
import sys
import threading
from pathlib import Path
from typing import Sequence

import pytest


# Ensure `import runnerhub...` works when running `pytest` from repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from runnerhub.config.load_config import AppConfig, CleanupConfig, RunnerConfig, StorageConfig  # noqa: E402
from runnerhub.errors import ExecutionError  # noqa: E402
from runnerhub.runners.invoker import CommandResult, ProcessInvoker  # noqa: E402


LIST_BANNER = (
    "\x1b[0;33mRuntime platform                                    \x1b[0;m  arch=amd64 os=linux pid=4242 "
    "revision=abc123 version=16.11.0\n"
    "Listing configured runners                          ConfigFile=/etc/gitlab-runner/config.toml\n"
)


class FakeRunnerBinary(ProcessInvoker):
    """In-memory stand-in for the runner binary.

    Overrides `run()` only, so argument construction and escaping in ProcessInvoker are
    still exercised. Knobs let tests inject failures per subcommand.
    """

    def __init__(self) -> None:
        super().__init__(command="gitlab-runner", timeout_s=5.0)
        self.registered: dict[str, dict[str, str]] = {}
        self.calls: list[list[str]] = []
        self.command_lines: list[str] = []
        self.fail_register = False
        self.timeout_register = False
        self.fail_list = False
        self.hide_from_list = False
        self.fail_unregister_tokens: set[str] = set()
        self.fail_unregister_description = False
        self.list_on_stderr = True
        self._lock = threading.Lock()
        self._seq = itertools.count(1)

    def add_live(self, *, description: str, token: str, url: str = "https://ci.example.org") -> None:
        with self._lock:
            self.registered[token] = {"description": description, "url": url}

    def _fail(self, args: Sequence[str], message: str, *, timed_out: bool = False) -> ExecutionError:
        return ExecutionError(
            message,
            command=self.build_command_line(args),
            returncode=None if timed_out else 1,
            stderr=message,
            timed_out=timed_out,
        )

    def render_list(self) -> str:
        lines = [LIST_BANNER]
        for token, info in self.registered.items():
            lines.append(
                f"{info['description']:<52}\x1b[0;m Executor=shell Token={token} URL={info['url']}\n"
            )
        return "".join(lines)

    def run(self, args: Sequence[str]) -> CommandResult:
        args = list(args)
        with self._lock:
            self.calls.append(args)
            self.command_lines.append(self.build_command_line(args))
            sub = args[0]
            if sub == "list":
                if self.fail_list:
                    raise self._fail(args, "list failed")
                text = LIST_BANNER if self.hide_from_list else self.render_list()
                if self.list_on_stderr:
                    return CommandResult(stdout="", stderr=text, returncode=0)
                return CommandResult(stdout=text, stderr="", returncode=0)
            if sub == "register":
                if self.timeout_register:
                    raise self._fail(args, "register timed out", timed_out=True)
                if self.fail_register:
                    raise self._fail(args, "register failed: 403 Forbidden")
                opts = dict(zip(args[2::2], args[3::2]))
                token = f"glrt-{next(self._seq):06d}"
                self.registered[token] = {"description": opts["--description"], "url": opts["--url"]}
                return CommandResult(stdout="", stderr="Runner registered successfully.", returncode=0)
            if sub == "unregister":
                flag, value = args[1], args[2]
                if flag == "--token":
                    if value in self.fail_unregister_tokens or value not in self.registered:
                        raise self._fail(args, f"unregister failed for {value}")
                    del self.registered[value]
                    return CommandResult(stdout="", stderr="Unregistering runner... succeeded", returncode=0)
                if flag == "--description":
                    if self.fail_unregister_description:
                        raise self._fail(args, "unregister by description failed")
                    matches = [t for t, i in self.registered.items() if i["description"] == value]
                    if not matches:
                        raise self._fail(args, "no runner with that description")
                    for t in matches:
                        del self.registered[t]
                    return CommandResult(stdout="", stderr="", returncode=0)
            raise self._fail(args, f"unexpected subcommand: {args!r}")

    def subcommands(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def fake_binary() -> FakeRunnerBinary:
    return FakeRunnerBinary()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        runner=RunnerConfig(command="gitlab-runner", executor="shell", command_timeout_s=5.0),
        cleanup=CleanupConfig(enabled=False, retention_months=1, cron="0 0 * * *", timezone="UTC"),
        storage=StorageConfig(sqlite_path=str(tmp_path / "runnerhub.db"), busy_timeout_ms=5000),
    )
