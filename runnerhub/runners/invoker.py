from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from typing import Sequence

from runnerhub.config.load_config import RunnerConfig
from runnerhub.errors import ExecutionError


logger = logging.getLogger(__name__)


_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_/:=-]")

# Flags whose following argument is a secret and must not reach the logs.
_SECRET_FLAGS = frozenset({"--token", "--registration-token"})


def shellescape(arg: str) -> str:
    """Escape one argument for a POSIX shell command line.

    Arguments made only of `[A-Za-z0-9_/:=-]` pass through unchanged; anything else
    is single-quoted with embedded quotes rewritten as `'\\''`.
    """
    s = str(arg)
    if s == "" or _UNSAFE_RE.search(s):
        return "'" + s.replace("'", "'\\''") + "'"
    return s


def _redact(args: Sequence[str]) -> list[str]:
    out: list[str] = []
    hide_next = False
    for a in args:
        if hide_next:
            out.append("***")
            hide_next = False
            continue
        out.append(a)
        if a in _SECRET_FLAGS:
            hide_next = True
    return out


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    returncode: int

    @property
    def output(self) -> str:
        # The runner binary prints `list` results on stderr on some versions.
        return self.stdout or self.stderr


class ProcessInvoker:
    """Runs subcommands of the external runner binary.

    One call spawns one child process and blocks the calling thread until it exits
    or the timeout elapses. No retries are performed here.
    """

    def __init__(self, *, command: str = "gitlab-runner", timeout_s: float = 60.0, executor: str = "shell") -> None:
        self.command = command
        self.timeout_s = float(timeout_s)
        self.executor = executor

    @classmethod
    def from_config(cls, cfg: RunnerConfig) -> "ProcessInvoker":
        return cls(command=cfg.command, timeout_s=cfg.command_timeout_s, executor=cfg.executor)

    def build_command_line(self, args: Sequence[str]) -> str:
        return " ".join([self.command, *(shellescape(a) for a in args)])

    def run(self, args: Sequence[str]) -> CommandResult:
        command_line = self.build_command_line(args)
        display = " ".join([self.command, *(shellescape(a) for a in _redact(args))])
        logger.debug("exec: %s", display)
        try:
            proc = subprocess.run(
                command_line,
                shell=True,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            stderr = e.stderr.decode("utf-8", "replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
            logger.warning("exec timed out after %.1fs: %s", self.timeout_s, display)
            raise ExecutionError(
                f"Command timed out after {self.timeout_s:g}s.",
                command=display,
                stderr=stderr,
                timed_out=True,
            ) from e
        except OSError as e:
            logger.warning("exec failed to spawn: %s (%s)", display, e)
            raise ExecutionError(f"Failed to spawn command: {e}", command=display, stderr=str(e)) from e

        if proc.returncode != 0:
            logger.warning("exec exited %d: %s", proc.returncode, display)
            raise ExecutionError(
                f"Command exited with status {proc.returncode}.",
                command=display,
                returncode=proc.returncode,
                stderr=proc.stderr or "",
            )
        return CommandResult(stdout=proc.stdout or "", stderr=proc.stderr or "", returncode=proc.returncode)

    # --- Subcommands
    def list_output(self) -> str:
        return self.run(["list"]).output

    def register(
        self,
        *,
        url: str,
        registration_token: str,
        description: str,
        tags: Sequence[str] | None = None,
    ) -> CommandResult:
        args = [
            "register",
            "--non-interactive",
            "--url",
            url,
            "--token",
            registration_token,
            "--description",
            description,
            "--executor",
            self.executor,
        ]
        tag_list = join_tags(tags)
        if tag_list:
            args.extend(["--tag-list", tag_list])
        return self.run(args)

    def unregister_by_token(self, token: str) -> CommandResult:
        return self.run(["unregister", "--token", token])

    def unregister_by_description(self, description: str) -> CommandResult:
        return self.run(["unregister", "--description", description])


def join_tags(tags: Sequence[str] | str | None) -> str:
    """Normalize tags to the binary's comma-joined `--tag-list` form.

    Accepts either a sequence or a single comma-separated string.
    """
    if not tags:
        return ""
    items = tags.split(",") if isinstance(tags, str) else [p for t in tags for p in str(t).split(",")]
    return ",".join(t.strip() for t in items if t.strip())
