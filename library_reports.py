#!/usr/bin/env python3
"""
library_reports.py

Tabular and graphical reports over a LendingService.

This module provides functions to:
- Turn the engine's items, borrowers and loans into pandas DataFrames
- Rank items by lifetime loans and list open loans with their days late
- Save those tables as CSV files, plus an Excel workbook when an engine is installed
- Draw annotated bar charts of the most borrowed items and outstanding penalties

Reports only read from the service; they never change lending state.

Typical usage:
    python library_reports.py --items items.csv --borrowers borrowers.csv --out library_reports

The public entrypoint is `save_reports(service, out_dir)`.
"""
from __future__ import annotations
import argparse
import datetime
import logging
import math
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

logger = logging.getLogger("LendingReports")

ITEM_COLUMNS = ["Item ID", "Title", "Author", "Year", "Total", "Available", "Loans"]
BORROWER_COLUMNS = ["Borrower ID", "Name", "Email", "Held", "Held Items", "Penalty"]
LOAN_COLUMNS = ["Loan ID", "Item ID", "Borrower ID", "Start", "Due", "Returned", "Status", "Fine"]


# -------------------- Frames -------------------- #
def items_frame(service) -> pd.DataFrame:
    """One row per catalog item, in catalog order."""
    rows = [{
        "Item ID": item.item_id,
        "Title": item.title,
        "Author": item.author,
        "Year": item.year,
        "Total": item.total_copies,
        "Available": item.available_copies,
        "Loans": item.times_borrowed,
    } for item in service.all_items()]
    return pd.DataFrame(rows, columns=ITEM_COLUMNS)


def borrowers_frame(service) -> pd.DataFrame:
    """
    One row per borrower.

    `Held Items` is a comma separated list of item ids; `Penalty` is a float
    copy of the Decimal balance, for plotting and spreadsheets.
    """
    rows = [{
        "Borrower ID": b.borrower_id,
        "Name": b.name,
        "Email": b.email,
        "Held": b.held_count,
        "Held Items": ",".join(b.held_items),
        "Penalty": float(b.penalty_balance),
    } for b in service.all_borrowers()]
    return pd.DataFrame(rows, columns=BORROWER_COLUMNS)


def loans_frame(service) -> pd.DataFrame:
    """One row per ledger entry, in ledger order. Date columns are datetime64."""
    rows = [{
        "Loan ID": loan.loan_id,
        "Item ID": loan.item_id,
        "Borrower ID": loan.borrower_id,
        "Start": loan.start_date,
        "Due": loan.due_date,
        "Returned": loan.returned_on,
        "Status": loan.status.value,
        "Fine": float(loan.fine),
    } for loan in service.all_loans()]
    df = pd.DataFrame(rows, columns=LOAN_COLUMNS)
    for col in ["Start", "Due", "Returned"]:
        df[col] = pd.to_datetime(df[col], errors="coerce")
    return df


def top_borrowed_frame(service, n: int = 5) -> pd.DataFrame:
    """Top `n` items by lifetime loans, ranked from 1."""
    rows = [{"Rank": rank, "Item ID": item.item_id, "Title": item.title, "Loans": item.times_borrowed}
            for rank, item in enumerate(service.top_borrowed_items(n), start=1)]
    return pd.DataFrame(rows, columns=["Rank", "Item ID", "Title", "Loans"])


def overdue_summary(service, today: Optional[datetime.date] = None) -> pd.DataFrame:
    """
    Open loans with the days they are past due and the fine they would carry if returned `today`.

    Args:
        service: the LendingService to read.
        today: reference date; defaults to the service clock.

    Returns:
        DataFrame with the loan columns plus `Days Late` and `Projected Fine`,
        sorted by days late (descending).
    """
    today = today or service.today()
    df = loans_frame(service)
    df = df[df["Returned"].isna()].copy()
    days = (pd.Timestamp(today) - df["Due"]).dt.days
    df["Days Late"] = np.where(days > 0, days, 0).astype(int)
    df["Projected Fine"] = df["Days Late"] * float(service.daily_fine)
    return df.sort_values("Days Late", ascending=False, kind="stable").reset_index(drop=True)


# -------------------- Output helpers -------------------- #
def try_save_excel(dfs: dict, out_path: Path) -> tuple:
    """
    Attempt to write multiple DataFrames into an Excel workbook.

    Uses pandas.ExcelWriter which requires openpyxl (or an appropriate engine)
    to be available. On failure returns (False, error_message) so callers can
    rely on the CSV exports instead.

    Returns:
        Tuple[bool, Optional[str]]: (success_flag, error_message_or_None).
    """
    try:
        with pd.ExcelWriter(out_path) as writer:
            for name, df in dfs.items():
                df.to_excel(writer, sheet_name=name[:31], index=False)
        return True, None
    except Exception as e:
        return False, str(e)


def save_plot(fig, path: Path) -> None:
    """Save a matplotlib figure to disk ensuring the parent directory exists."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, bbox_inches="tight")
    plt.close(fig)


def annotate_bar_values(ax, fmt="{:.0f}", fontsize=8):
    """Add numeric labels on top of each visible bar in an Axes."""
    for p in ax.patches:
        height = p.get_height()
        if height is None or (isinstance(height, float) and math.isnan(height)) or abs(height) < 1e-12:
            continue
        ax.text(p.get_x() + p.get_width() / 2, height, fmt.format(height),
                ha="center", va="bottom", fontsize=fontsize)


# -------------------- Charts -------------------- #
def plot_top_borrowed(top: pd.DataFrame, path: Path) -> Optional[Path]:
    """Bar chart of the most borrowed items. Returns None when there is nothing to draw."""
    if top.empty or top["Loans"].sum() == 0:
        return None
    fig, ax = plt.subplots(figsize=(10, 5))
    sns.barplot(data=top, x="Title", y="Loans", color="steelblue", ax=ax)
    ax.set_title("Most Borrowed Items")
    ax.set_xlabel("")
    ax.tick_params(axis="x", labelrotation=30)
    annotate_bar_values(ax)
    save_plot(fig, path)
    return path


def plot_penalties(borrowers: pd.DataFrame, path: Path) -> Optional[Path]:
    """Bar chart of borrowers with an outstanding balance."""
    owing = borrowers[borrowers["Penalty"] > 0].sort_values("Penalty", ascending=False)
    if owing.empty:
        return None
    fig, ax = plt.subplots(figsize=(10, 5))
    sns.barplot(data=owing, x="Name", y="Penalty", color="indianred", ax=ax)
    ax.set_title("Outstanding Penalties")
    ax.set_xlabel("")
    ax.set_ylabel("Balance")
    annotate_bar_values(ax, fmt="{:.2f}")
    save_plot(fig, path)
    return path


# -------------------- Orchestrator -------------------- #
def save_reports(service, out_dir, top_n: int = 5) -> List[Path]:
    """
    Write every report for `service` under `out_dir`.

    Layout:
        out_dir/tables/*.csv         one CSV per frame
        out_dir/tables/lending.xlsx  same tables, when an Excel engine is installed
        out_dir/plots/*.png          charts that have data to show

    Chart failures are logged and skipped so the tables are always written.

    Returns:
        Paths of the files written.
    """
    out_dir = Path(out_dir)
    tables_dir = out_dir / "tables"
    plots_dir = out_dir / "plots"
    tables_dir.mkdir(parents=True, exist_ok=True)

    tables: Dict[str, pd.DataFrame] = {
        "items": items_frame(service),
        "borrowers": borrowers_frame(service),
        "loans": loans_frame(service),
        "top_borrowed": top_borrowed_frame(service, top_n),
        "overdue": overdue_summary(service),
    }

    written: List[Path] = []
    for name, df in tables.items():
        path = tables_dir / f"{name}.csv"
        df.to_csv(path, index=False)
        written.append(path)

    ok, err = try_save_excel(tables, tables_dir / "lending.xlsx")
    if ok:
        written.append(tables_dir / "lending.xlsx")
    else:
        logger.warning("Excel export skipped (openpyxl may be missing): %s", err)

    charts = [
        (plot_top_borrowed, tables["top_borrowed"], plots_dir / "01_top_borrowed.png"),
        (plot_penalties, tables["borrowers"], plots_dir / "02_penalties.png"),
    ]
    for plot, df, path in charts:
        try:
            p = plot(df, path)
            if p is not None:
                written.append(p)
        except Exception as e:
            logger.warning("Could not draw %s: %s", path.name, e)

    logger.info("Saved %d report file(s) to %s", len(written), out_dir)
    return written


# -------------------- CLI -------------------- #
if __name__ == "__main__":
    from library_system import LendingService, seed_from_csv, seed_sample_data

    parser = argparse.ArgumentParser(description="Library lending reports")
    parser.add_argument("--items", default=None, help="CSV of items: Item ID, Title, Author, Year, Copies")
    parser.add_argument("--borrowers", default=None, help="CSV of borrowers: Name, Email")
    parser.add_argument("--out", default="library_reports", help="Output folder for tables & plots")
    parser.add_argument("--top", type=int, default=5, help="How many items to rank")
    args = parser.parse_args()

    lending = LendingService()
    if args.items or args.borrowers:
        seed_from_csv(lending, args.items, args.borrowers)
    else:
        seed_sample_data(lending)
    for p in save_reports(lending, args.out, args.top):
        print(" -", Path(p).resolve())
