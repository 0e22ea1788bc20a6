"""
Test Suite

Structure:
    tests/
    ├── __init__.py         # This file
    ├── conftest.py         # Pytest fixtures
    ├── fakes.py            # In-memory remote store and frozen clock
    ├── unit/               # Engine, service and utility tests
    └── integration/        # Multi-service scenarios against the fake store

To run tests:
    pytest backend/tests/
    pytest backend/tests/unit/
    pytest backend/tests/integration/
"""
