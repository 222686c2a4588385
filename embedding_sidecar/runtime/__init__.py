"""Runtime helpers for the sidecar service."""
