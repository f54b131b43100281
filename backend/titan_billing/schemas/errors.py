from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["low", "medium", "high", "critical"]


class ReportedError(BaseModel):
    name: str = ""
    message: str = ""
    stack: str | None = None


class ErrorContext(BaseModel):
    model_config = ConfigDict(extra="allow")

    component: str | None = None
    action: str | None = None
    url: str | None = None
    metadata: dict[str, Any] | None = None


class ErrorReportIn(BaseModel):
    error: ReportedError
    context: ErrorContext = Field(default_factory=ErrorContext)
    severity: Severity = "medium"
    category: str = "unknown"


class ErrorReportOut(BaseModel):
    success: bool = True
    error_id: str = Field(serialization_alias="errorId")
    message: str = "Error report received successfully"


class StoredErrorReport(BaseModel):
    error_id: str | None = Field(default=None, serialization_alias="errorId")
    title: str
    description: str | None = None
    severity: str | None = None
    category: str | None = None
    context: dict[str, Any] | None = None
    created_at: Any = Field(default=None, serialization_alias="createdAt")


class ErrorReportFilters(BaseModel):
    severity: Severity | None = None
    category: str | None = None
    limit: int


class ErrorReportList(BaseModel):
    reports: list[StoredErrorReport]
    total: int
    filters: ErrorReportFilters


class ErrorReportListOut(BaseModel):
    success: bool = True
    data: ErrorReportList
