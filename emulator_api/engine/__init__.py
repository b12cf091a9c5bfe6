"""Emulated chain engine: the facade contract the API depends on and its Redis-backed implementation.

Kept free of FastAPI concerns so it can be driven directly from tests and tooling.
"""
