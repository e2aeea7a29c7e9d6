from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass
from typing import Iterable


# CSI sequences (colors, cursor movement) emitted by the binary's logger.
_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")

_BANNER_PREFIXES = ("Listing", "Runtime", "ConfigFile")

# Example line:
#   s21_containers                      Executor=shell Token=ASn7aZYvdLuHyyxAsbUY URL=https://git.example.org
# The name is free text and may itself contain "Token=" or "Executor=", so the
# structured fields are anchored at the end of the line and the name is greedy.
_LINE_RE = re.compile(
    r"^(?P<name>.+)\s+Executor=(?P<executor>\S+)\s+Token=(?P<token>\S+)(?:\s+URL=(?P<url>\S+))?\s*$"
)

_MARKER_RE = re.compile(r"^\[owner:(?P<owner>[^\]]+):(?P<nonce>\d+-[0-9a-f]+)\]\s?(?P<name>.*)$", re.DOTALL)


@dataclass(frozen=True)
class LiveRunnerStatus:
    name: str
    token: str
    status: str
    url: str | None = None


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text or "")


def parse_runner_list(raw: str) -> list[LiveRunnerStatus]:
    """Parse `<binary> list` output into live runner entries.

    The format is not contractually stable, so parsing is tolerant: banner lines,
    blank lines and any line not ending in `Executor=... Token=... [URL=...]` after
    a name are skipped.
    """
    out: list[LiveRunnerStatus] = []
    for line in strip_ansi(raw).splitlines():
        if not line.strip() or line.startswith(_BANNER_PREFIXES):
            continue
        m = _LINE_RE.match(line)
        if not m:
            continue
        name = m.group("name").strip()
        if not name:
            continue
        out.append(
            LiveRunnerStatus(
                name=name,
                token=m.group("token"),
                status=m.group("executor"),
                url=m.group("url"),
            )
        )
    return out


def index_by_token(statuses: Iterable[LiveRunnerStatus]) -> dict[str, LiveRunnerStatus]:
    # First occurrence wins if the binary ever lists a token twice.
    out: dict[str, LiveRunnerStatus] = {}
    for s in statuses:
        out.setdefault(s.token, s)
    return out


def build_description(owner_id: str, display_name: str) -> str:
    """Return a per-attempt unique description for `register`.

    The marker embeds the owner and a nanosecond timestamp (plus a short random suffix,
    since two threads can read the same clock value) so the entry can be found again
    in `list` output without ambiguity.
    """
    nonce = f"{time.time_ns()}-{secrets.token_hex(2)}"
    return f"[owner:{owner_id}:{nonce}] {display_name.strip()}"


def split_description_marker(name: str) -> tuple[str | None, str]:
    """Split a live entry name into (owner_id, display_name).

    Names without a marker (registered outside this service) return `(None, name)`.
    """
    m = _MARKER_RE.match(name or "")
    if not m:
        return None, name
    return m.group("owner"), m.group("name")


def find_by_name(statuses: Iterable[LiveRunnerStatus], name: str) -> LiveRunnerStatus | None:
    target = name.strip()
    for s in statuses:
        if s.name == target:
            return s
    return None
