from typing import AbstractSet, Iterable, List, Optional, Sequence, Tuple

from core.contracts.formatter import Formatter
from core.contracts.models import (
    AggregateReport,
    FileNote,
    Finding,
    InlineComment,
    Issue,
    LocatedIssue,
    ReportContext,
    ReviewStats,
)
from core.formatter.jinja_formatter import Jinja2Formatter

# Inclusive lower bounds, checked top-down.
RECOMMENDATION_THRESHOLDS: Sequence[Tuple[int, str]] = (
    (90, "Approve"),
    (75, "Approve with Comments"),
    (60, "Request Changes"),
)
RECOMMENDATION_FLOOR = "Reject"

RISK_THRESHOLDS: Sequence[Tuple[int, str]] = (
    (75, "Low"),
    (60, "Medium"),
)
RISK_FLOOR = "High"

TYPE_EMOJIS = {
    "error": "🚨",
    "warning": "⚠️",
    "suggestion": "💡",
}

CATEGORY_EMOJIS = {
    "security": "🔒",
    "performance": "⚡",
    "maintainability": "🔧",
    "style": "🎨",
    "logic": "🧠",
    "best-practices": "📚",
}


def _step(score: int, thresholds: Sequence[Tuple[int, str]], floor: str) -> str:
    for bound, label in thresholds:
        if score >= bound:
            return label
    return floor


def recommend(score: int) -> str:
    return _step(score, RECOMMENDATION_THRESHOLDS, RECOMMENDATION_FLOOR)


def assess_risk(score: int) -> str:
    return _step(score, RISK_THRESHOLDS, RISK_FLOOR)


def round_half_up(total: int, count: int) -> int:
    """Integer mean rounded half-up; 67.5 becomes 68. Scores are never negative."""
    if count <= 0:
        return 0
    return (2 * total + count) // (2 * count)


def comment_key(path: str, line: int) -> str:
    return f"{path}:{line}"


def calculate_stats(findings: Iterable[Finding]) -> ReviewStats:
    findings = list(findings)
    stats = ReviewStats(
        average_score=round_half_up(sum(f.score for f in findings), len(findings)),
    )
    for finding in findings:
        for issue in finding.issues:
            if issue.type == "error":
                stats.error_count += 1
            elif issue.type == "warning":
                stats.warning_count += 1
            elif issue.type == "suggestion":
                stats.suggestion_count += 1

            if issue.category == "security":
                stats.security_issue_count += 1
            if issue.category == "performance":
                stats.performance_issue_count += 1
    return stats


def format_issue_comment(issue: Issue) -> str:
    """Renders one issue as the body of an inline review comment."""
    emoji = TYPE_EMOJIS.get(issue.type, "💡")
    category_emoji = CATEGORY_EMOJIS.get(issue.category, "")

    comment = f"{emoji} **{issue.type.upper()}** {category_emoji}".rstrip() + "\n\n"
    comment += f"{issue.message}\n\n"
    if issue.suggestion:
        comment += f"**Suggestion:**\n{issue.suggestion}\n\n"
    comment += f"*Category: {issue.category}*"
    return comment


def fallback_summary(findings: Sequence[Finding], stats: ReviewStats) -> str:
    issues = sum(len(f.issues) for f in findings)
    return (
        f"**Files Reviewed:** {len(findings)}\n"
        f"**Issues Found:** {issues}\n"
        f"**Average Score:** {stats.average_score}/100\n\n"
        "The code review has been completed. Please check individual file reviews for detailed feedback."
    )


class ReviewAggregator:
    """
    Folds per-file findings into one PR-level report and a list of inline comments.

    Stateless apart from the formatter, so repeated or concurrent calls with the same
    input give the same report.
    """

    def __init__(self, formatter: Optional[Formatter] = None):
        self.formatter = formatter or Jinja2Formatter()

    def inline_comments(
        self, findings: Iterable[Finding], existing_comment_keys: AbstractSet[str]
    ) -> List[InlineComment]:
        """
        Builds inline comments for every issue anchored to a line.

        Issues without a positive line number stay in the report body only. Keys already
        present in `existing_comment_keys` (formatted `path:line`) are skipped so that a
        re-run does not repeat itself.
        """
        comments: List[InlineComment] = []
        for finding in findings:
            for issue in finding.issues:
                if not issue.line or issue.line <= 0:
                    continue
                key = comment_key(finding.filename, issue.line)
                if key in existing_comment_keys:
                    continue
                comments.append(
                    InlineComment(path=finding.filename, line=issue.line, body=format_issue_comment(issue))
                )
        return comments

    def build_context(self, findings: Sequence[Finding], stats: ReviewStats, summary: str) -> ReportContext:
        strengths: List[str] = []
        for finding in findings:
            for strength in finding.strengths:
                if strength and strength not in strengths:
                    strengths.append(strength)

        def located(predicate) -> List[LocatedIssue]:
            return [
                LocatedIssue(filename=f.filename, issue=issue)
                for f in findings
                for issue in f.issues
                if predicate(issue)
            ]

        return ReportContext(
            findings=list(findings),
            stats=stats,
            summary=summary,
            risk=assess_risk(stats.average_score),
            recommendation=recommend(stats.average_score),
            strengths=strengths,
            concerns=[FileNote(filename=f.filename, text=c) for f in findings for c in f.concerns if c],
            critical_issues=located(lambda i: i.type == "error"),
            security_issues=located(lambda i: i.category == "security"),
            performance_issues=located(lambda i: i.category == "performance"),
        )

    def aggregate(
        self,
        findings: Sequence[Finding],
        existing_comment_keys: AbstractSet[str] = frozenset(),
        overall_summary: Optional[str] = None,
    ) -> AggregateReport:
        """
        Produces the consolidated report.

        Args:
            findings: One finding per reviewed file, in review order. Degraded findings
                (score 0, no issues) are treated like any other.
            existing_comment_keys: `path:line` keys that already carry a comment.
            overall_summary: Narrative for the executive summary; a statistical summary is
                used when omitted.

        Returns:
            The report body, the new inline comments and the statistics.
        """
        findings = [f if isinstance(f, Finding) else Finding.model_validate(f) for f in findings]
        stats = calculate_stats(findings)
        summary = overall_summary or fallback_summary(findings, stats)
        ctx = self.build_context(findings, stats, summary)
        total_issues = sum(len(f.issues) for f in findings)

        return AggregateReport(
            body_markdown=self.formatter.format(ctx),
            inline_comments=self.inline_comments(findings, existing_comment_keys),
            stats=stats,
            recommendation=ctx.recommendation,
            risk=ctx.risk,
            review_event="REQUEST_CHANGES" if total_issues > 0 else "COMMENT",
        )


def aggregate(
    findings: Sequence[Finding],
    existing_comment_keys: AbstractSet[str] = frozenset(),
    overall_summary: Optional[str] = None,
) -> AggregateReport:
    return ReviewAggregator().aggregate(findings, existing_comment_keys, overall_summary)
