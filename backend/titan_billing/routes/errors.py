from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from titan_billing.core.database import get_db
from titan_billing.dependencies.auth import get_current_user
from titan_billing.dependencies.validation import parse_json_body
from titan_billing.models.user import User
from titan_billing.schemas.errors import (
    ErrorReportFilters,
    ErrorReportIn,
    ErrorReportList,
    ErrorReportListOut,
    ErrorReportOut,
    Severity,
    StoredErrorReport,
)
from titan_billing.services.error_reports import ErrorReportService, InvalidErrorReport

router = APIRouter(prefix="/api/errors", tags=["errors"])


@router.post("/report", response_model=ErrorReportOut)
async def report_error(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> ErrorReportOut:
    payload = await parse_json_body(request, ErrorReportIn, message="Invalid error report payload")
    service = ErrorReportService(db)
    try:
        error_id = service.record(
            user,
            payload,
            user_agent=request.headers.get("user-agent"),
            referer=request.headers.get("referer"),
        )
    except InvalidErrorReport as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return ErrorReportOut(error_id=error_id)


@router.get("/report", response_model=ErrorReportListOut)
def list_error_reports(
    limit: int = Query(10, ge=1, le=100),
    severity: Severity | None = Query(None),
    category: str | None = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> ErrorReportListOut:
    rows, total = ErrorReportService(db).list_reports(user, limit=limit, severity=severity, category=category)
    reports = []
    for row in rows:
        meta = row.activity_metadata or {}
        reports.append(
            StoredErrorReport(
                error_id=row.related_entity_id,
                title=row.title,
                description=row.description,
                severity=meta.get("severity"),
                category=meta.get("category"),
                context=meta.get("context"),
                created_at=row.created_at,
            )
        )
    return ErrorReportListOut(
        data=ErrorReportList(
            reports=reports,
            total=total,
            filters=ErrorReportFilters(severity=severity, category=category, limit=limit),
        )
    )
