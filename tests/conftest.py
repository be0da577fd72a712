"""
Shared fixtures: synthetic raw trip windows shaped like the TLC yellow-taxi files.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


def _raw_trips(n: int = 200, start: str = "2024-01-07", seed: int = 42) -> pd.DataFrame:
    rng = np.random.RandomState(seed)

    pickup = pd.Timestamp(start) + pd.to_timedelta(rng.randint(0, 7 * 24 * 60, n), unit="min")
    dropoff = pickup + pd.to_timedelta(rng.uniform(3, 40, n), unit="min")
    distance = rng.uniform(0.3, 15, n)
    fare = 3.0 + 2.5 * distance + rng.uniform(0, 5, n)
    payment = rng.choice([1, 2], n, p=[0.7, 0.3])
    tip = np.where(payment == 1, 0.18 * fare + rng.normal(0, 0.5, n), 0.0)

    return pd.DataFrame({
        "VendorID": rng.choice([1, 2], n),
        "tpep_pickup_datetime": pickup,
        "tpep_dropoff_datetime": dropoff,
        "passenger_count": rng.randint(1, 5, n).astype(float),
        "trip_distance": distance,
        "PULocationID": rng.choice([132, 161, 236], n),
        "payment_type": payment,
        "fare_amount": fare,
        "tip_amount": np.clip(tip, 0, None),
        "congestion_surcharge": 2.5,
        "airport_fee": 0.0,
    })


@pytest.fixture
def make_raw_trips():
    """Factory for raw trip windows: make_raw_trips(n, start, seed)."""
    return _raw_trips


@pytest.fixture
def zone_lookup():
    """Minimal zone lookup covering the synthetic pickup locations."""
    return pd.DataFrame({
        "LocationID": [132, 161, 236],
        "Borough": ["Queens", "Manhattan", "Manhattan"],
        "Zone": ["JFK Airport", "Midtown Center", "Upper East Side North"],
        "service_zone": ["Airports", "Yellow Zone", "Yellow Zone"],
    })
