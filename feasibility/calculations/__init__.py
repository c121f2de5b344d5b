"""
Feasibility Calculation Engine

Core calculation modules for development feasibility analysis.
All cash amounts are Decimal, quantized to the cent.
"""

from feasibility.calculations import (
    amortization,
    debt,
    engine,
    irr,
    rows,
    statements,
    waterfall,
)

__all__ = ["amortization", "debt", "engine", "irr", "rows", "statements", "waterfall"]
