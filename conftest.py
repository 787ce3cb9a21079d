"""
Pytest configuration for the BFVM test suite.

    python -m pytest                 # everything
    python -m pytest -m "not growth" # skip the long tape walks
"""


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "growth: tests that walk the tape across many chunks")
