"""
Pytest configuration for the fwflash test suite.

Integration tests clone real repositories and invoke PlatformIO; they are
deselected by default and enabled with --full.
"""

from pathlib import Path

import pytest

INTEGRATION_DIR = Path(__file__).parent / "tests" / "integration"


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--full",
        action="store_true",
        default=False,
        help="Also run integration tests (needs git, PlatformIO and network)",
    )


def pytest_configure(config):
    """Drop the default 'not integration' expression when --full is given."""
    if config.getoption("--full") and config.getoption("-m", "") == "not integration":
        config.option.markexpr = ""


@pytest.hookimpl(tryfirst=True)
def pytest_collection_modifyitems(config, items):
    """Mark everything under tests/integration as an integration test."""
    for item in items:
        if INTEGRATION_DIR in Path(item.path).parents:
            item.add_marker(pytest.mark.integration)
