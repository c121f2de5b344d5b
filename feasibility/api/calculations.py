"""
Feasibility calculation API endpoints.

These endpoints accept a fully resolved input snapshot (or a plain cash flow
series) and return calculated results. Nothing is persisted.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from feasibility.calculations import engine, export, irr
from feasibility.calculations.errors import ConfigurationError
from feasibility.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


def _run(payload: Dict[str, Any]) -> engine.ResultSnapshot:
    try:
        return engine.run(payload)
    except ConfigurationError as e:
        logger.info(f"Rejected snapshot: {e}")
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/run")
async def run_snapshot(payload: Dict[str, Any] = Body(...)):
    """Run the full feasibility calculation for an input snapshot."""
    return _run(payload).to_dict()


@router.post("/financing.csv")
async def financing_csv(payload: Dict[str, Any] = Body(...)):
    """Export the financing schedule of an input snapshot as CSV."""
    result = _run(payload)
    content = export.export_financing_to_csv(result.financing, result.grid)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="financing-{result.fingerprint[:12]}.csv"'},
    )


class IRRInput(BaseModel):
    """Input for IRR calculation on a monthly series."""

    cash_flows: List[float]
    discount_rate_pa: Optional[float] = None


class IRRResponse(BaseModel):
    """IRR and related metrics; undefined values are null."""

    irr: Optional[float] = None
    irr_pa: Optional[float] = None
    npv: float
    multiple: Optional[float] = None
    profit: float


@router.post("/irr", response_model=IRRResponse)
async def calculate_irr_endpoint(inputs: IRRInput):
    """Calculate IRR for given monthly cash flows."""
    rate = inputs.discount_rate_pa
    if rate is None:
        rate = get_settings().default_discount_rate_pa

    try:
        periodic = irr.calculate_irr(inputs.cash_flows)
        npv = irr.calculate_npv(inputs.cash_flows, rate)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return IRRResponse(
        irr=periodic,
        irr_pa=irr.annualize_irr(periodic),
        npv=float(npv),
        multiple=irr.calculate_multiple(inputs.cash_flows),
        profit=float(irr.calculate_profit(inputs.cash_flows)),
    )


class RateConversionInput(BaseModel):
    """Nominal/effective rate conversion request."""

    rate: float
    periods_per_year: int = 12
    to: str = Field(default="effective", pattern="^(effective|nominal)$")


@router.post("/rates/convert")
async def convert_rate(inputs: RateConversionInput):
    """Convert a nominal annual rate to effective, or back."""
    try:
        if inputs.to == "effective":
            converted = irr.nominal_to_effective(inputs.rate, inputs.periods_per_year)
        else:
            converted = irr.effective_to_nominal(inputs.rate, inputs.periods_per_year)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {
        "rate": inputs.rate,
        "periods_per_year": inputs.periods_per_year,
        "to": inputs.to,
        "converted": float(converted),
    }
