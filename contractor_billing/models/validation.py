"""Validation issue models shared by the input validators."""

from typing import Literal, Optional

from pydantic import BaseModel


class ValidationIssue(BaseModel):
    """One problem with an invoice draft, patch or line selection."""

    field: str
    # 'missing', 'not_found', 'wrong_client', 'immutable', ...
    issue_type: str
    message: str
    severity: Literal["error", "warning", "info"] = "error"
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """Issues collected for one invoice draft or patch."""

    issues: list[ValidationIssue] = []

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]
