"""
Transaction layer: raw ingestion through weekly revenue.

Each stage takes the previous stage's full table and returns a new one:

    read_transactions -> normalize_country -> filter_market
        -> clean_transactions -> deduplicate_transactions
        -> aggregate_weekly_revenue
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Tuple, Union

import numpy as np
import pandas as pd

from retail_mmm.errors import SchemaError
from retail_mmm.utils.dates import WEEK_START_DAY, week_start
from retail_mmm.utils.logging import get_logger

logger = get_logger(__name__)

RAW_COLUMNS = [
    "invoice_no",
    "stock_code",
    "description",
    "quantity",
    "invoice_date",
    "unit_price",
    "customer_id",
    "country",
]

# Common export spellings of the raw columns (UCI Online Retail and similar).
COLUMN_ALIASES = {
    "invoiceno": "invoice_no",
    "invoice": "invoice_no",
    "stockcode": "stock_code",
    "invoicedate": "invoice_date",
    "unitprice": "unit_price",
    "price": "unit_price",
    "customerid": "customer_id",
    "customer_id": "customer_id",
}

DEDUP_KEY = ["invoice_no", "stock_code", "quantity", "unit_price", "invoice_date"]
DEDUP_ORDER = ["invoice_no", "stock_code", "invoice_date"]

_INVOICE_PATTERN = r"[0-9]+"


def _require(df: pd.DataFrame, cols: Iterable[str], table: str) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise SchemaError(missing, table)


def canonicalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Lower-case, strip and alias column names onto `RAW_COLUMNS`."""
    renamed = {}
    for col in df.columns:
        key = str(col).strip().lower().replace(" ", "_")
        renamed[col] = COLUMN_ALIASES.get(key.replace("_", ""), COLUMN_ALIASES.get(key, key))
    return df.rename(columns=renamed)


# =============================
# Ingestion
# =============================
def read_transactions(path: Union[str, Path]) -> pd.DataFrame:
    """
    Load raw transactions verbatim.

    Identifier columns are read as strings so that malformed invoice numbers
    survive until the cleaner rejects them. Nothing is filtered here.
    """
    raw = pd.read_csv(path, dtype=str, keep_default_na=True)
    raw = canonicalize_columns(raw)
    _require(raw, RAW_COLUMNS, "transactions")
    logger.info("Loaded raw transactions", extra={"path": str(path), "rows": len(raw)})
    return raw[RAW_COLUMNS].copy()


# =============================
# Normalizer
# =============================
def _alias_key(value) -> str:
    return str(value).strip().casefold()


def normalize_country(
    df: pd.DataFrame,
    canonical: str = "Germany",
    aliases: Iterable[str] = ("GER", "DE", "Deutschland", "Germany"),
) -> pd.DataFrame:
    """
    Tag each row with `country_normalized`.

    Labels matching `canonical` or any alias (ignoring case and surrounding
    whitespace) become `canonical`; every other label passes through as-is.
    """
    _require(df, ["country"], "transactions")
    keys = {_alias_key(a) for a in aliases} | {_alias_key(canonical)}
    out = df.copy()
    matches = out["country"].map(lambda v: pd.notna(v) and _alias_key(v) in keys)
    out["country_normalized"] = out["country"].where(~matches.astype(bool), canonical)
    return out


def filter_market(df: pd.DataFrame, canonical: str = "Germany") -> pd.DataFrame:
    _require(df, ["country_normalized"], "normalized transactions")
    out = df[df["country_normalized"] == canonical].copy()
    logger.info(
        "Filtered target market",
        extra={"market": canonical, "rows_in": len(df), "rows_out": len(out)},
    )
    return out


# =============================
# Cleaner
# =============================
@dataclass
class CleaningReport:
    rows_in: int = 0
    rows_out: int = 0
    rows_dropped: int = 0
    drops_by_reason: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "rows_in": self.rows_in,
            "rows_out": self.rows_out,
            "rows_dropped": self.rows_dropped,
            "drops_by_reason": dict(self.drops_by_reason),
        }


def clean_transactions(df: pd.DataFrame) -> Tuple[pd.DataFrame, CleaningReport]:
    """
    Drop structurally invalid rows and derive line revenue.

    A row survives only if its timestamp is present, unit price > 0,
    quantity is a non-zero whole number and its invoice number is all
    digits. Failing rows are dropped silently and counted per predicate; a
    row failing several predicates counts once per reason but once in
    `rows_dropped`. A fractional quantity is a failure, never truncated.

    Parameters
    ----------
    df:
        Market-filtered transactions with the raw columns.

    Returns
    -------
    (pd.DataFrame, CleaningReport)
        Cleaned rows with typed columns and ``revenue = quantity * unit_price``,
        plus the drop accounting.

    Notes
    -----
    Returns (negative quantity) keep their negative revenue. Values that
    cannot be coerced to the expected type fail the matching predicate.
    """
    _require(df, ["invoice_no", "stock_code", "quantity", "unit_price", "invoice_date", "customer_id"], "transactions")

    d = df.copy()
    d["invoice_no"] = d["invoice_no"].astype("string").str.strip()
    d["quantity"] = pd.to_numeric(d["quantity"], errors="coerce")
    d["unit_price"] = pd.to_numeric(d["unit_price"], errors="coerce")
    d["invoice_date"] = pd.to_datetime(d["invoice_date"], errors="coerce")

    qty = d["quantity"]
    whole = np.isfinite(qty) & (qty == qty.round())

    failures = {
        "missing_timestamp": d["invoice_date"].isna(),
        "non_positive_unit_price": ~(d["unit_price"] > 0),
        "zero_quantity": ~(qty.notna() & (qty != 0)),
        "non_integer_quantity": qty.notna() & ~whole,
        "non_numeric_invoice": ~d["invoice_no"].str.fullmatch(_INVOICE_PATTERN).fillna(False).astype(bool),
    }

    invalid = pd.Series(False, index=d.index)
    for mask in failures.values():
        invalid |= mask

    out = d[~invalid].copy()
    out["quantity"] = out["quantity"].astype("int64")
    out["unit_price"] = out["unit_price"].astype(float)
    out["invoice_no"] = out["invoice_no"].astype(str)
    out["revenue"] = out["quantity"] * out["unit_price"]

    report = CleaningReport(
        rows_in=len(d),
        rows_out=len(out),
        rows_dropped=int(invalid.sum()),
        drops_by_reason={reason: int(mask.sum()) for reason, mask in failures.items()},
    )
    logger.info("Cleaned transactions", extra=report.to_dict())
    return out, report


# =============================
# Deduplicator
# =============================
def deduplicate_transactions(df: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
    """
    Collapse exact duplicates on (invoice, product, quantity, price, timestamp).

    The survivor of each group is the first row after a stable sort by
    invoice, product and timestamp, so repeated runs keep the same row.

    Returns
    -------
    (pd.DataFrame, int)
        Deduplicated rows in canonical order, and the number removed.
    """
    _require(df, DEDUP_KEY, "cleaned transactions")
    ordered = df.sort_values(DEDUP_ORDER, kind="mergesort")
    out = ordered.drop_duplicates(subset=DEDUP_KEY, keep="first").reset_index(drop=True)
    removed = len(df) - len(out)
    logger.info("Deduplicated transactions", extra={"rows_in": len(df), "rows_out": len(out), "duplicates": removed})
    return out, removed


# =============================
# Weekly aggregation
# =============================
WEEKLY_REVENUE_COLS: List[str] = ["week_start", "weekly_revenue", "orders", "customers"]


def aggregate_weekly_revenue(df: pd.DataFrame, start_day: str = WEEK_START_DAY) -> pd.DataFrame:
    """
    Roll transactions up to one row per week present in the data.

    Output columns: week_start, weekly_revenue (sum), orders (distinct
    invoices), customers (distinct non-null customer ids). Weeks without
    transactions are absent.
    """
    _require(df, ["invoice_date", "revenue", "invoice_no", "customer_id"], "deduplicated transactions")
    if df.empty:
        return pd.DataFrame(
            {
                "week_start": pd.Series(dtype="datetime64[ns]"),
                "weekly_revenue": pd.Series(dtype=float),
                "orders": pd.Series(dtype="int64"),
                "customers": pd.Series(dtype="int64"),
            }
        )

    d = df.assign(week_start=week_start(df["invoice_date"], start_day))
    weekly = (
        d.groupby("week_start", sort=True)
         .agg(
             weekly_revenue=("revenue", "sum"),
             orders=("invoice_no", "nunique"),
             customers=("customer_id", "nunique"),
         )
         .reset_index()
    )
    return weekly[WEEKLY_REVENUE_COLS]
