"""
CSV Export

Financing schedule export for spreadsheet users.
"""

import pandas as pd

from feasibility.calculations.debt import FinancingSchedule
from feasibility.calculations.timeline import PeriodGrid

FINANCING_COLUMNS = [
    "period",
    "date",
    "draws",
    "interest",
    "principal",
    "balance",
    "fees_upfront",
    "fees_commitment",
    "fees_ongoing",
    "dsra_balance",
]


def financing_frame(financing: FinancingSchedule, grid: PeriodGrid) -> pd.DataFrame:
    """One row per period, amounts kept as cent-exact Decimals."""
    df = pd.DataFrame({
        "period": list(grid.indices),
        "date": [d.isoformat() for d in grid.dates()],
    })
    for column in FINANCING_COLUMNS[2:]:
        df[column] = list(getattr(financing, column))
    return df[FINANCING_COLUMNS]


def export_financing_to_csv(financing: FinancingSchedule, grid: PeriodGrid) -> str:
    """
    Export the aggregated financing schedule to a CSV string.

    Args:
        financing: Aggregated financing schedule
        grid: Period grid for the date column

    Returns:
        CSV string with a header row and one line per period
    """
    return financing_frame(financing, grid).to_csv(index=False)
