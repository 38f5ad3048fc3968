"""
Evaluation history API endpoints.

Lists, retrieves and deletes stored reports.
"""

from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status

from edugrade.middleware.rate_limit import RATE_LIMITS, limiter
from edugrade.models.report import HistoryLog
from edugrade.services.history_store import HistoryStore, get_history_store

router = APIRouter(prefix="/api/history", tags=["history"])


def serialize_log(log: HistoryLog) -> Dict[str, Any]:
    return {
        "reports": [r.to_json_dict() for r in log.reports],
        "count": len(log),
        "averagePercentage": log.average_percentage,
    }


@router.get("")
@limiter.limit(RATE_LIMITS["history"])  # type: ignore[untyped-decorator]
async def list_history(
    request: Request,
    history_store: HistoryStore = Depends(get_history_store),
) -> Dict[str, Any]:
    """List stored reports, newest first, with summary statistics."""
    return serialize_log(await history_store.load())


@router.get("/{report_id}")
@limiter.limit(RATE_LIMITS["history"])  # type: ignore[untyped-decorator]
async def get_report(
    request: Request,
    report_id: UUID,
    history_store: HistoryStore = Depends(get_history_store),
) -> Dict[str, Any]:
    """Get one stored report by id."""
    report = (await history_store.load()).get(report_id)
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Report {report_id} not found"
        )
    return report.to_json_dict()


@router.delete("/{report_id}")
@limiter.limit(RATE_LIMITS["history"])  # type: ignore[untyped-decorator]
async def delete_report(
    request: Request,
    report_id: UUID,
    history_store: HistoryStore = Depends(get_history_store),
) -> Dict[str, Any]:
    """Delete a report. Deleting an unknown id leaves history unchanged."""
    return serialize_log(await history_store.remove(report_id))
