from __future__ import annotations

import json
import logging
import secrets
import string
import time
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from titan_billing.models.user import User
from titan_billing.models.user_activity import UserActivity
from titan_billing.schemas.errors import ErrorReportIn

logger = logging.getLogger(__name__)

ERROR_ACTIVITY_TYPE = "system_error"
ERROR_ENTITY_TYPE = "error_report"
MAX_LIST_LIMIT = 100

_ID_ALPHABET = string.ascii_lowercase + string.digits


class InvalidErrorReport(ValueError):
    pass


def generate_error_id(now_ms: int | None = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"err_{stamp}_{suffix}"


class ErrorReportService:
    """Stores client error reports in the user's activity log."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        user: User,
        report: ErrorReportIn,
        *,
        user_agent: str | None = None,
        referer: str | None = None,
    ) -> str:
        if not report.error.name.strip() or not report.error.message.strip():
            raise InvalidErrorReport("Invalid error report payload")

        error_id = generate_error_id()
        timestamp = datetime.now(timezone.utc).isoformat()
        context = report.context.model_dump(exclude_none=True)

        logger.error(
            "Client error report: %s",
            json.dumps(
                {
                    "error_id": error_id,
                    "user_id": user.user_id,
                    "name": report.error.name,
                    "message": report.error.message,
                    "severity": report.severity,
                    "category": report.category,
                    "component": context.get("component"),
                    "timestamp": timestamp,
                },
                separators=(",", ":"),
            ),
        )

        activity = UserActivity(
            user_id=user.user_id,
            activity_type=ERROR_ACTIVITY_TYPE,
            title=f"Error: {report.error.name}",
            description=report.error.message,
            activity_metadata={
                "error_id": error_id,
                "error": report.error.model_dump(),
                "context": context,
                "severity": report.severity,
                "category": report.category,
                "user_agent": user_agent,
                "referer": referer,
                "timestamp": timestamp,
            },
            source="web",
            related_entity_type=ERROR_ENTITY_TYPE,
            related_entity_id=error_id,
        )
        try:
            self.db.add(activity)
            self.db.commit()
        except SQLAlchemyError:
            # The report itself already reached the logs; losing the activity row is tolerable.
            self.db.rollback()
            logger.exception("Failed to log error activity for %s", error_id)

        return error_id

    def list_reports(
        self,
        user: User,
        *,
        limit: int = 10,
        severity: str | None = None,
        category: str | None = None,
    ) -> tuple[list[UserActivity], int]:
        normalized_limit = max(1, min(int(limit or 10), MAX_LIST_LIMIT))
        rows = (
            self.db.query(UserActivity)
            .filter(
                UserActivity.user_id == user.user_id,
                UserActivity.activity_type == ERROR_ACTIVITY_TYPE,
            )
            .order_by(UserActivity.created_at.desc(), UserActivity.id.desc())
            .all()
        )
        # Severity and category live in the JSON metadata column.
        matching = [
            row
            for row in rows
            if (severity is None or (row.activity_metadata or {}).get("severity") == severity)
            and (category is None or (row.activity_metadata or {}).get("category") == category)
        ]
        return matching[:normalized_limit], len(matching)
