"""
Pytest configuration and shared fixtures.
"""

import pytest
import sys
import os
from decimal import Decimal

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from feasibility.main import app
from feasibility.calculations.inputs import load_snapshot


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")


def decimal_row(*values):
    """Build a Decimal row from plain numbers."""
    return tuple(Decimal(str(v)) for v in values)


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def snapshot_data():
    """
    A for-sale scheme: land and 12 months of construction funded by a senior
    bullet loan and LP/GP equity, with all units handed over in month 18.
    """
    return {
        "timeline": {"periods": 24, "start_date": "2025-01-01"},
        "cost_items": [
            {
                "key": "land",
                "label": "Land acquisition",
                "category": "land",
                "base_amount": 3000000,
                "start_period": 0,
                "duration_periods": 1,
            },
            {
                "key": "construction",
                "label": "Hard costs",
                "category": "construction",
                "base_amount": 6000000,
                "start_period": 1,
                "duration_periods": 12,
            },
        ],
        "unit_types": [
            {
                "key": "apartments",
                "kind": "sale",
                "units": 40,
                "price_per_unit": 300000,
                "start_period": 12,
                "end_period": 19,
                "recognition": "handover",
            },
        ],
        "debt": [
            {
                "key": "senior",
                "limit": 5000000,
                "ltc_percent": 0.6,
                "nominal_rate_pa": 0.08,
                "amort_type": "bullet",
                "availability_start": 0,
                "availability_end": 12,
                "tenor_months": 6,
                "upfront_fee_pct": 0.01,
            },
        ],
        "equity": [
            {
                "key": "lp",
                "role": "LP",
                "commitment": 4500000,
                "preferred_return": {"rate_pa": 0.08, "compounding": "monthly"},
            },
            {
                "key": "gp",
                "role": "GP",
                "commitment": 500000,
                "preferred_return": {"rate_pa": 0.08, "compounding": "monthly"},
            },
        ],
        "waterfall_config": {
            "mode": "european",
            "hurdles": [
                {
                    "key": "promote",
                    "trigger": {"irr_threshold": 0.10},
                    "split_after_catchup": {"lp": 0.8, "gp": 0.2},
                    "catchup": {"enabled": True, "gp_target_share_of_profits": 0.2},
                },
            ],
        },
    }


@pytest.fixture
def snapshot(snapshot_data):
    """Validated input snapshot."""
    return load_snapshot(snapshot_data)


@pytest.fixture
def rental_snapshot_data(snapshot_data):
    """The same scheme held as a rental and sold at a cap rate in the last month."""
    data = dict(snapshot_data)
    data["unit_types"] = [
        {
            "key": "apartments",
            "kind": "rental",
            "units": 40,
            "price_per_unit": 2500,
            "occupancy": 0.95,
            "start_period": 13,
            "end_period": 24,
            "escalation_rate": 0.03,
        },
    ]
    data["cost_items"] = snapshot_data["cost_items"] + [
        {
            "key": "operations",
            "label": "Operating costs",
            "category": "opex",
            "base_amount": 330000,
            "start_period": 13,
            "duration_periods": 11,
            "is_opex": True,
        },
    ]
    data["debt"] = [dict(snapshot_data["debt"][0], tenor_months=11)]
    data["valuation"] = {"exit_cap_rate": 0.055, "selling_cost_pct": 0.02}
    return data
