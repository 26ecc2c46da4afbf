"""
Pytest configuration and shared fixtures for the retail MMM tests.
"""
import numpy as np
import pandas as pd
import pytest

from retail_mmm.data.channels import FixtureFeed


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests for a single stage")
    config.addinivalue_line("markers", "integration: Tests that chain several pipeline stages")
    config.addinivalue_line("markers", "e2e: End-to-end tests that run the full pipeline")


# =======================
# TRANSACTION FIXTURES
# =======================

def make_row(invoice, stock, qty, price, date, customer="C1", country="Germany", description="item"):
    return {
        "invoice_no": invoice,
        "stock_code": stock,
        "description": description,
        "quantity": qty,
        "invoice_date": date,
        "unit_price": price,
        "customer_id": customer,
        "country": country,
    }


@pytest.fixture
def dirty_transactions() -> pd.DataFrame:
    """Small raw table with one row per failure mode plus valid rows and a return"""
    rows = [
        make_row("536365", "A1", 6, 2.55, "2010-03-01 08:26:00", "17850"),
        make_row("536366", "A2", 2, 10.00, "2010-03-02 09:00:00", "17850"),
        make_row("536367", "A1", -1, 2.55, "2010-03-03 10:00:00", "13047"),   # return
        make_row("536368", "B1", 3, 0.00, "2010-03-03 11:00:00", "13047"),    # zero price
        make_row("536369", "B2", 0, 4.00, "2010-03-04 12:00:00", "13047"),    # zero quantity
        make_row("C536370", "B3", -2, 4.00, "2010-03-04 13:00:00", "13047"),  # non-numeric invoice
        make_row("536371", "B4", 1, 4.00, None, "13047"),                     # no timestamp
        make_row("536372", "B5", 1, -4.00, "2010-03-09 13:00:00", None),      # negative price
        make_row("536373", "A3", 4, 1.25, "2010-03-09 14:00:00", None),
    ]
    return pd.DataFrame(rows)


@pytest.fixture
def daily_transactions() -> pd.DataFrame:
    """Twenty weeks of German daily invoices plus injected noise rows"""
    rng = np.random.default_rng(11)
    days = pd.date_range("2010-03-01", periods=140, freq="D")
    rows = [
        make_row(
            str(500000 + i),
            f"P{i % 7}",
            int(rng.integers(1, 20)),
            float(np.round(rng.uniform(1.0, 9.0), 2)),
            (day + pd.Timedelta(hours=10)).strftime("%Y-%m-%d %H:%M:%S"),
            f"C{i % 15}",
            "Germany" if i % 3 else " deutschland ",
        )
        for i, day in enumerate(days)
    ]
    noise = [
        dict(rows[0]),                                                    # exact duplicate
        make_row("C500001", "P1", -3, 2.0, "2010-03-02 10:00:00"),        # cancellation prefix
        make_row("600001", "P1", 3, 0.0, "2010-03-02 10:00:00"),          # zero price
        make_row("600002", "P1", 0, 2.0, "2010-03-02 10:00:00"),          # zero quantity
        make_row("600003", "P1", 3, 2.0, None),                           # no timestamp
        make_row("600004", "P1", 3, 2.0, "2010-03-02 10:00:00", country="France"),
    ]
    return pd.DataFrame(rows + noise)


def german_invoices(start: str, periods: int, seed: int) -> pd.DataFrame:
    """One clean German invoice per day"""
    rng = np.random.default_rng(seed)
    days = pd.date_range(start, periods=periods, freq="D")
    return pd.DataFrame([
        make_row(
            str(700000 + i),
            f"P{i % 11}",
            int(rng.integers(1, 40)),
            float(np.round(rng.uniform(1.0, 12.0), 2)),
            (day + pd.Timedelta(hours=9)).strftime("%Y-%m-%d %H:%M:%S"),
            f"C{i % 23}",
        )
        for i, day in enumerate(days)
    ])


@pytest.fixture
def two_year_transactions() -> pd.DataFrame:
    """720 days of German invoices from Monday 2010-01-04 (103 weeks)"""
    return german_invoices("2010-01-04", 720, seed=1)


# =======================
# CHANNEL FIXTURES
# =======================

def random_feed(seed: int, start: str, periods: int, low: float, high: float) -> FixtureFeed:
    rng = np.random.default_rng(seed)
    dates = pd.date_range(start, periods=periods, freq="D")
    return FixtureFeed(pd.DataFrame({"date": dates, "value": np.round(rng.uniform(low, high, periods), 2)}))


@pytest.fixture
def fixture_feeds():
    return {
        "search_spend": random_feed(1, "2010-03-01", 140, 100.0, 900.0),
        "social_spend": random_feed(2, "2010-03-01", 140, 50.0, 600.0),
        "email_volume": random_feed(3, "2010-03-01", 140, 500.0, 4000.0),
    }


@pytest.fixture
def spring_promotions():
    return [{"name": "Spring Sale", "start_date": "2010-03-10", "end_date": "2010-03-12"}]


# =======================
# DESIGN FIXTURES
# =======================

@pytest.fixture
def synthetic_design():
    """Forty weeks, two media columns in [0, 1) and one free control"""
    rng = np.random.default_rng(5)
    n = 40
    X = pd.DataFrame(
        {
            "search_spend": rng.uniform(0.0, 1.0, n),
            "social_spend": rng.uniform(0.0, 1.0, n),
            "trend_t": np.arange(n, dtype=float),
        }
    )
    y = 1000.0 + 400.0 * X["search_spend"] + 150.0 * X["social_spend"] - 3.0 * X["trend_t"] + rng.normal(0, 5, n)
    return X, y.to_numpy()
