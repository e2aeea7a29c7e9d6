"""Runner fleet manager: ownership, lifecycle and cleanup for CI runners."""
