"""
ContextRAG - Test Suite
=======================

Structure:
    tests/
    ├── conftest.py   - Shared fixtures: in-memory stores, fake providers, config
    └── unit/         - Unit tests (fast, no database or network)

Running Tests:
    # All tests
    pytest

    # Specific test file
    pytest tests/unit/test_scheduler.py

    # Stop on first failure
    pytest -x
"""
