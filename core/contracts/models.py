from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Literal, Optional, Dict, Any

FileStatus = Literal["added", "modified", "removed", "renamed", "copied", "changed", "unchanged"]
IssueType = Literal["error", "warning", "suggestion"]


class ChangedFile(BaseModel):
    """A file touched by the pull request, as reported by GitHub's compare API."""

    model_config = ConfigDict(frozen=True)

    path: str
    status: FileStatus = "modified"
    change_count: int = Field(0, ge=0)
    additions: int = 0
    deletions: int = 0
    patch: Optional[str] = None

    @classmethod
    def from_github(cls, data: Dict[str, Any]) -> "ChangedFile":
        return cls(
            path=data["filename"],
            status=data.get("status", "modified"),
            change_count=data.get("changes") or 0,
            additions=data.get("additions") or 0,
            deletions=data.get("deletions") or 0,
            patch=data.get("patch"),
        )


class ReviewCandidate(ChangedFile):
    language: str = "text"
    priority: int = 0


class DiffLine(BaseModel):
    line: Optional[int] = None
    content: str


class ParsedDiff(BaseModel):
    added: List[DiffLine] = []
    removed: List[DiffLine] = []
    context: List[DiffLine] = []


class FileStats(BaseModel):
    total: int = 0
    by_language: Dict[str, int] = {}
    by_status: Dict[str, int] = {}
    total_changes: int = 0


class Issue(BaseModel):
    type: IssueType = "suggestion"
    line: Optional[int] = None
    message: str = ""
    suggestion: Optional[str] = None
    category: str = "best-practices"


class Finding(BaseModel):
    """Structured review of one file, whichever provider produced it."""

    filename: str
    language: str = "text"
    status: str = "modified"
    summary: str = ""
    issues: List[Issue] = []
    suggestions: List[Dict[str, Any]] = []
    score: int = 0
    strengths: List[str] = []
    concerns: List[str] = []

    @field_validator("issues", "suggestions", "strengths", "concerns", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        # Unparseable scores count as 0.
        try:
            score = int(round(float(value)))
        except (TypeError, ValueError, OverflowError):
            return 0
        return max(0, min(100, score))


class InlineComment(BaseModel):
    path: str
    line: int
    body: str


class ReviewStats(BaseModel):
    average_score: int = 0
    error_count: int = 0
    warning_count: int = 0
    suggestion_count: int = 0
    security_issue_count: int = 0
    performance_issue_count: int = 0


class AggregateReport(BaseModel):
    body_markdown: str
    inline_comments: List[InlineComment] = []
    stats: ReviewStats
    recommendation: str
    risk: str
    review_event: Literal["REQUEST_CHANGES", "COMMENT"] = "COMMENT"


class ReviewResult(BaseModel):
    summary: str
    findings: List[Finding] = []
    issues_found: int = 0
    files_reviewed: int = 0
    review_url: Optional[str] = None
    duration_sec: float = 0.0
    report: Optional[AggregateReport] = None


class LocatedIssue(BaseModel):
    filename: str
    issue: Issue


class FileNote(BaseModel):
    filename: str
    text: str


class ReportContext(BaseModel):
    """Everything the report template needs, precomputed by the aggregator."""

    findings: List[Finding] = []
    stats: ReviewStats
    summary: str
    risk: str
    recommendation: str
    strengths: List[str] = []
    concerns: List[FileNote] = []
    critical_issues: List[LocatedIssue] = []
    security_issues: List[LocatedIssue] = []
    performance_issues: List[LocatedIssue] = []
