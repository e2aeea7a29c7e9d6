"""HTTP API layer (FastAPI).

This module exposes a small, versioned `/api/v1` surface to:
- register, list and delete runners
- trigger a cleanup sweep and inspect the scheduler
- read the lifecycle audit trail

The API is intentionally thin: core behavior lives in `runnerhub/runtime` and `runnerhub/storage`.
Caller identity is supplied by an upstream auth proxy through request headers.
"""
