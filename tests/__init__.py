"""Tests for the embedding sidecar.

Everything runs offline: ``conftest`` writes a tiny BERT model to a
temporary directory and starts the gRPC service in-process.
"""
