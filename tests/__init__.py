"""
Engine test suite.

Capabilities are replaced with AsyncMock fakes built in helpers.py, so
every phase of a task can be driven without network or sandbox access.
"""
