"""
Unit Test Layer Configuration

Structure:
    tests/unit/
    └── checkout/    Pricing, coupons, state machine, gateway, models

Usage:
    pytest tests/unit -v                 # All unit tests
    pytest tests/unit -m unit -v         # By marker
"""


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
