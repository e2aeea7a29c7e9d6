"""Runtime orchestration (lifecycle manager, background cleanup).

This layer is responsible for:
- correlating persisted runner records with live state from the runner binary
- register / unregister against the binary with compensation on partial failure
- the scheduled garbage-collection sweep

It should remain independent from the HTTP layer (`runnerhub/api`), so both scripts and API
can reuse the same lifecycle logic.
"""
