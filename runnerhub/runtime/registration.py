"""Register-then-relist-then-correlate protocol as an explicit state machine.

The runner binary offers no transaction spanning `register` and `list`, so a
registration moves through:

    PENDING -> CORRELATED -> PERSISTED
    PENDING | CORRELATED -> FAILED (compensated or not)

Every step is a method so partial failures can be driven and inspected in tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from runnerhub.errors import ConflictError, ExecutionError, ParseMismatchError, RegistrationError
from runnerhub.runners.invoker import ProcessInvoker
from runnerhub.runners.parser import build_description, find_by_name, parse_runner_list
from runnerhub.storage.sqlite_store import RunnerRecord, SQLiteStore


logger = logging.getLogger(__name__)


class RegistrationState(str, Enum):
    PENDING = "pending"
    CORRELATED = "correlated"
    PERSISTED = "persisted"
    FAILED = "failed"


_TRANSITIONS: dict[RegistrationState, frozenset[RegistrationState]] = {
    RegistrationState.PENDING: frozenset({RegistrationState.CORRELATED, RegistrationState.FAILED}),
    RegistrationState.CORRELATED: frozenset({RegistrationState.PERSISTED, RegistrationState.FAILED}),
    RegistrationState.PERSISTED: frozenset(),
    RegistrationState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class RegistrationRequest:
    owner_id: str
    url: str
    registration_token: str
    display_name: str
    tags: Sequence[str] | str | None = None
    owner_role: str | None = None

    def validate(self) -> None:
        if not self.owner_id.strip():
            raise ValueError("owner_id must not be empty.")
        if not self.url.strip():
            raise ValueError("url must not be empty.")
        if not self.registration_token.strip():
            raise ValueError("registration_token must not be empty.")
        if not self.display_name.strip():
            raise ValueError("name must not be empty.")
        if any(ch in self.display_name for ch in "\r\n"):
            raise ValueError("name must be a single line.")


@dataclass
class RegistrationAttempt:
    request: RegistrationRequest
    description: str
    state: RegistrationState = RegistrationState.PENDING
    token: str | None = None
    record: RunnerRecord | None = None
    error: Exception | None = None
    compensated: bool = False
    history: list[RegistrationState] = field(default_factory=lambda: [RegistrationState.PENDING])

    def _move(self, new_state: RegistrationState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid registration transition: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    # --- Steps
    def submit(self, invoker: ProcessInvoker) -> None:
        """Run `register` against the binary. Raises ExecutionError; state stays PENDING."""
        invoker.register(
            url=self.request.url.strip(),
            registration_token=self.request.registration_token.strip(),
            description=self.description,
            tags=self.request.tags,
        )

    def correlate(self, raw_list_output: str) -> str:
        """Find our entry in fresh `list` output and record its token."""
        entry = find_by_name(parse_runner_list(raw_list_output), self.description)
        if entry is None:
            raise ParseMismatchError(f"Registered runner not found in live list: {self.description!r}")
        self._move(RegistrationState.CORRELATED)
        self.token = entry.token
        return entry.token

    def persist(self, store: SQLiteStore) -> RunnerRecord:
        if self.state is not RegistrationState.CORRELATED or self.token is None:
            raise RuntimeError("persist() requires a correlated registration.")
        self.record = store.insert_runner(
            owner_id=self.request.owner_id,
            token=self.token,
            name=self.request.display_name.strip(),
            url=self.request.url.strip(),
            owner_role=self.request.owner_role,
        )
        self._move(RegistrationState.PERSISTED)
        return self.record

    def fail(self, error: Exception, *, compensate: Callable[[], None] | None = None) -> None:
        """Mark the attempt failed, running a best-effort compensation first.

        A compensation failure is logged and never replaces `error`.
        """
        self.error = error
        if compensate is not None:
            try:
                compensate()
                self.compensated = True
            except ExecutionError as ce:
                logger.error(
                    "compensating unregister failed for %r: %s (stderr=%r)",
                    self.description,
                    ce,
                    ce.stderr,
                )
        self._move(RegistrationState.FAILED)


def run_registration(
    request: RegistrationRequest,
    *,
    invoker: ProcessInvoker,
    store: SQLiteStore,
) -> RegistrationAttempt:
    """Drive one registration to PERSISTED, or raise after moving it to FAILED.

    Raises RegistrationError for binary, correlation and storage failures, and
    ConflictError when the recovered token is already owned by another record.
    """
    request.validate()
    attempt = RegistrationAttempt(
        request=request,
        description=build_description(request.owner_id, request.display_name),
    )

    def _compensate() -> None:
        invoker.unregister_by_description(attempt.description)

    try:
        attempt.submit(invoker)
    except ExecutionError as e:
        # A timed-out register may still have completed on the binary's side.
        attempt.fail(e, compensate=_compensate if e.timed_out else None)
        raise RegistrationError(
            f"Runner registration failed: {e}",
            description=attempt.description,
            compensated=attempt.compensated,
        ) from e

    try:
        attempt.correlate(invoker.list_output())
    except (ExecutionError, ParseMismatchError) as e:
        attempt.fail(e, compensate=_compensate)
        raise RegistrationError(
            "Runner was registered but could not be located in live state.",
            description=attempt.description,
            compensated=attempt.compensated,
        ) from e

    try:
        attempt.persist(store)
    except ConflictError as e:
        attempt.fail(e, compensate=_compensate)
        raise
    except Exception as e:
        # Locked database, full disk: the binary still holds the registration, so undo it.
        attempt.fail(e, compensate=_compensate)
        raise RegistrationError(
            f"Runner was registered but could not be recorded: {e}",
            description=attempt.description,
            compensated=attempt.compensated,
        ) from e

    return attempt
