"""Adapters around the external runner binary.

- `invoker`: builds escaped command lines and executes them with a timeout.
- `parser`: turns the binary's human-oriented `list` output into records.

Nothing here touches SQLite; correlation with persisted state lives in `runnerhub/runtime`.
"""
