"""Shared test helpers.

In-memory fake capability services (``fakes``) and a ``FakeCloud`` that wires
them into ``DeployServices`` (``services``). Fixtures themselves live in
``tests/conftest.py``.
"""
