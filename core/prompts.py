import json
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from config.models import ReviewConfig
from core.contracts.models import Finding, Issue, ParsedDiff, ReviewCandidate

SYSTEM_PROMPT = """You are an expert code reviewer with deep knowledge of software engineering best practices, security, performance optimization, and clean code principles.

Your role is to provide constructive, actionable feedback on code changes. Focus on:
- Code quality and maintainability
- Security vulnerabilities and best practices
- Performance implications
- Logic errors and potential bugs
- Code style and conventions
- Architecture and design patterns

Provide specific, actionable feedback with clear explanations. Be encouraging while highlighting areas for improvement. Always suggest concrete solutions or alternatives.

Return your analysis in valid JSON format only, without any additional text or markdown formatting."""

RESPONSE_SCHEMA = """{
  "summary": "Brief overview of the changes and overall assessment",
  "issues": [
    {
      "type": "error|warning|suggestion",
      "line": 0,
      "message": "Description of the issue",
      "suggestion": "How to fix or improve",
      "category": "security|performance|maintainability|style|logic|best-practices"
    }
  ],
  "suggestions": [
    {
      "type": "improvement|optimization|alternative",
      "message": "Suggestion description",
      "example": "Code example if applicable"
    }
  ],
  "score": 85,
  "strengths": ["What was done well"],
  "concerns": ["Areas that need attention"]
}"""

LEVEL_FOCUS = {
    "basic": ["- Basic syntax and obvious errors"],
    "standard": [
        "- Code quality and maintainability",
        "- Common bugs and issues",
        "- Standard best practices",
    ],
    "detailed": [
        "- Deep architectural analysis",
        "- Advanced optimization opportunities",
        "- Comprehensive security analysis",
    ],
}

INVALID_RESPONSE_SUMMARY = "Analysis completed but response format was invalid"

JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

# Changed lines shown to the model per file; the full new content is sent anyway.
MAX_DIFF_LINES = 200


def system_prompt(config: ReviewConfig) -> str:
    return config.custom_prompts.get("system") or SYSTEM_PROMPT


def review_focus(config: ReviewConfig) -> str:
    focuses: List[str] = []
    if config.enable_security_review:
        focuses.append("- Security vulnerabilities and best practices")
    if config.enable_performance_review:
        focuses.append("- Performance implications and optimizations")
    if config.enable_best_practices:
        focuses.append("- Code quality and best practices")
    focuses.extend(LEVEL_FOCUS[config.review_level])
    return "\n".join(focuses)


def _diff_summary(diff: Optional[ParsedDiff]) -> str:
    if diff is None or not (diff.added or diff.removed):
        return "(no diff available)"
    lines = [f"+ L{d.line}: {d.content}" for d in diff.added]
    lines.extend(f"- {d.content}" for d in diff.removed)
    if len(lines) > MAX_DIFF_LINES:
        lines = lines[:MAX_DIFF_LINES] + [f"... ({len(lines) - MAX_DIFF_LINES} more changed lines)"]
    return "\n".join(lines)


def build_review_prompt(
    candidate: ReviewCandidate,
    old_content: Optional[str],
    new_content: str,
    config: ReviewConfig,
    diff: Optional[ParsedDiff] = None,
    pr_context: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Renders the per-file review request. Line numbers in the diff section refer to the
    new file, which is what inline comments are anchored to.
    """
    pr_context = pr_context or {}
    language = candidate.language
    extra: List[str] = []
    if pr_context.get("title"):
        extra.append(f"PR Title: {pr_context['title']}")
    if pr_context.get("body"):
        extra.append(f"PR Description: {pr_context['body']}")
    if config.language_hints:
        extra.append(f"Project languages: {config.language_hints}")
    extra.append(
        f"Status: {candidate.status}, +{candidate.additions}/-{candidate.deletions} ({candidate.change_count} changes)"
    )

    custom = config.custom_prompts.get("review")
    custom_section = f"\n## Additional Instructions\n{custom}\n" if custom else ""

    return f"""
Please review the following code changes in {candidate.path} ({language}):

## File Context
- File: {candidate.path}
- Language: {language}
- Review Level: {config.review_level}

## Review Focus
{review_focus(config)}
{custom_section}
## Old Content:
```{language}
{old_content or '(new file)'}
```

## New Content:
```{language}
{new_content}
```

## Changed Lines:
```diff
{_diff_summary(diff)}
```

## Additional Context:
{chr(10).join(extra)}

Please provide your analysis in the following JSON format:
{RESPONSE_SCHEMA}"""


def build_summary_prompt(findings: Sequence[Finding], pr_context: Optional[Dict[str, Any]] = None) -> str:
    pr_context = pr_context or {}
    total_issues = sum(len(f.issues) for f in findings)
    average = sum(f.score for f in findings) / len(findings) if findings else 0.0

    file_sections = "\n".join(
        f"\n### File {index}: {f.filename}\nScore: {f.score}/100\nIssues: {len(f.issues)}\nSummary: {f.summary}\n"
        for index, f in enumerate(findings, start=1)
    )
    context_lines = []
    if pr_context.get("title"):
        context_lines.append(f"PR Title: {pr_context['title']}")
    if pr_context.get("body"):
        context_lines.append(f"PR Description: {pr_context['body']}")

    return f"""
Please provide a comprehensive summary of this pull request code review:

## Review Statistics
- Files reviewed: {len(findings)}
- Total issues found: {total_issues}
- Average code quality score: {average:.1f}/100

## Individual File Reviews:
{file_sections}

## Context
{chr(10).join(context_lines)}

Please provide a concise summary focusing on:
1. Overall assessment of the changes
2. Key strengths of the implementation
3. Main areas requiring attention
4. Recommendations for the pull request

Keep it under 500 words and make it actionable for the development team."""


def _coerce_issue(raw: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    issue = dict(raw)
    if issue.get("type") not in ("error", "warning", "suggestion"):
        issue["type"] = "suggestion"
    line = issue.get("line")
    try:
        issue["line"] = int(line) if line not in (None, "") else None
    except (TypeError, ValueError):
        issue["line"] = None
    issue["message"] = str(issue.get("message") or "")
    if issue.get("suggestion") is not None:
        issue["suggestion"] = str(issue["suggestion"])
    issue["category"] = str(issue.get("category") or "best-practices")
    return issue


def _str_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value else []
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def parse_review_response(response: str, candidate: ReviewCandidate) -> Finding:
    """
    Extracts the JSON object from a model response and turns it into a Finding.

    The response must carry a `summary` and an `issues` list. Anything else yields a
    zero-score Finding whose `concerns` explain the parse failure.
    """
    base = {"filename": candidate.path, "language": candidate.language, "status": candidate.status}
    try:
        match = JSON_OBJECT.search(response or "")
        if not match:
            raise ValueError("No JSON found in response")
        parsed = json.loads(match.group(0))
        if not isinstance(parsed, dict) or not parsed.get("summary") or not isinstance(parsed.get("issues"), list):
            raise ValueError("Invalid response format")

        issues = [i for i in (_coerce_issue(raw) for raw in parsed["issues"]) if i is not None]
        return Finding(
            **base,
            summary=str(parsed["summary"]),
            issues=[Issue(**i) for i in issues],
            suggestions=[s for s in parsed.get("suggestions") or [] if isinstance(s, dict)],
            score=parsed.get("score", 0),
            strengths=_str_list(parsed.get("strengths")),
            concerns=_str_list(parsed.get("concerns")),
        )
    except (ValueError, ValidationError) as e:
        return Finding(
            **base,
            summary=INVALID_RESPONSE_SUMMARY,
            concerns=[f"Failed to parse AI response: {e}"],
        )


def failed_finding(candidate: ReviewCandidate, error: Exception) -> Finding:
    """Placeholder for a file whose review could not be completed."""
    return Finding(
        filename=candidate.path,
        language=candidate.language,
        status=candidate.status,
        summary=f"Review failed: {error}",
    )
