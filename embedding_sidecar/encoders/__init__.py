"""Embedding encoders.

Exports the ``ModelStore`` (model lifecycle) and the single-text embedding
pipeline. Heavy ML imports stay inside the implementation modules.
"""
