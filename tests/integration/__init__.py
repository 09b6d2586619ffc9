"""
Integration tests for the benchmark pipeline.

These tests verify the repositories and ledger hydration against the real
schema. They require a running PostgreSQL database and skip without one.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""
