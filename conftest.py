"""Pytest configuration for sparklab."""

# Prevent collection from source tree
collect_ignore = ["src"]


def pytest_configure(config):
    """Register custom test markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies, fast)")
    config.addinivalue_line(
        "markers", "spark: Tests that start a local SparkSession (require a Java runtime)"
    )
    config.addinivalue_line("markers", "slow: Slow tests (skip with -m 'not slow')")
