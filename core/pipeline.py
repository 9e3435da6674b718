import asyncio
import time
from typing import Any, Dict, List, Optional, Set

from config.models import Config
from core.aggregator import ReviewAggregator, comment_key, fallback_summary, calculate_stats
from core.contracts.models import AggregateReport, ChangedFile, Finding, ReviewCandidate, ReviewResult
from core.contracts.provider import LLMProvider
from core.prompts import (
    build_review_prompt,
    build_summary_prompt,
    INVALID_RESPONSE_SUMMARY,
    failed_finding,
    parse_review_response,
    system_prompt,
)
from core.selector import FileSelector, file_stats, parse_diff
from utils.errors import GitHubError
from utils.github import GitHubClient
from utils.logger import logger

NO_FILES_MESSAGE = "🤖 **AI Code Review**: No files found for review after applying exclusion filters."


class ReviewPipeline:
    """
    The main pipeline for reviewing a pull request.
    It orchestrates file selection, per-file AI review, aggregation and publishing.
    """

    def __init__(
        self,
        config: Config,
        github: GitHubClient,
        provider: LLMProvider,
        aggregator: Optional[ReviewAggregator] = None,
        log=None,
    ):
        """
        Args:
            config: The configuration object.
            github: Client used to read the PR and publish the review.
            provider: LLM provider used for per-file reviews and the overall summary.
            aggregator: Report builder, defaults to the Jinja2-backed one.
            log: Logger to use; defaults to the application logger bound to this component.
        """
        self.config = config
        self.github = github
        self.provider = provider
        self.selector = FileSelector(config.review)
        self.aggregator = aggregator or ReviewAggregator()
        self.log = log or logger.bind(component="pipeline")

    async def run(
        self,
        pull_number: int,
        base_sha: str,
        head_sha: str,
        dry_run: bool = False,
    ) -> ReviewResult:
        """
        Reviews a pull request end to end.

        Args:
            pull_number: The pull request number.
            base_sha: Commit the PR is compared against.
            head_sha: Commit under review.
            dry_run: Build the report but do not publish anything.

        Returns:
            What was reviewed and where the review was posted.
        """
        start = time.monotonic()
        self.log.info(f"🔍 Reviewing PR #{pull_number} ({base_sha[:7]}..{head_sha[:7]})")

        changed_files = await self.github.get_changed_files(base_sha, head_sha)
        self.log.info(f"📁 Found {len(changed_files)} changed files")
        candidates = self.select(changed_files)

        if not candidates:
            self.log.info("ℹ️  No files to review after applying filters")
            url = None if dry_run else await self.github.post_comment(pull_number, NO_FILES_MESSAGE)
            return ReviewResult(summary=NO_FILES_MESSAGE, review_url=url, duration_sec=time.monotonic() - start)

        existing_keys = await self._existing_comment_keys(pull_number)
        pr_context = await self._pull_request_context(pull_number)

        findings = await self.review_files(candidates, base_sha, head_sha, pr_context)
        summary = await self.summarize(findings, pr_context)
        report = self.aggregator.aggregate(findings, existing_keys, overall_summary=summary)
        self.log.info(
            f"Average score {report.stats.average_score}/100, recommendation: {report.recommendation}, "
            f"{len(report.inline_comments)} new inline comments"
        )

        url = None if dry_run else await self.publish(pull_number, head_sha, report)

        duration = time.monotonic() - start
        self.log.success(f"✅ Review completed in {duration:.1f}s")
        return ReviewResult(
            summary=summary,
            findings=findings,
            issues_found=sum(len(f.issues) for f in findings),
            files_reviewed=len(candidates),
            review_url=url,
            duration_sec=duration,
            report=report,
        )

    def select(self, changed_files: List[ChangedFile]) -> List[ReviewCandidate]:
        candidates = self.selector.select(changed_files)
        stats = file_stats(candidates)
        self.log.info(f"📝 Selected {len(candidates)} of {len(changed_files)} files for review")
        self.log.debug(f"Selected files by language: {stats.by_language}, by status: {stats.by_status}")
        return candidates

    async def review_files(
        self,
        candidates: List[ReviewCandidate],
        base_sha: str,
        head_sha: str,
        pr_context: Dict[str, Any],
    ) -> List[Finding]:
        """Reviews candidates concurrently; findings keep the candidates' order."""
        semaphore = asyncio.Semaphore(self.config.review.concurrency)
        total = len(candidates)

        async def guarded(index: int, candidate: ReviewCandidate) -> Finding:
            async with semaphore:
                self.log.info(f"📄 Reviewing file {index}/{total}: {candidate.path}")
                try:
                    return await self.review_file(candidate, base_sha, head_sha, pr_context)
                except Exception as e:
                    # Any failure becomes a zero-score finding.
                    self.log.warning(f"Failed to review {candidate.path}: {e}")
                    return failed_finding(candidate, e)

        return list(await asyncio.gather(*(guarded(i, c) for i, c in enumerate(candidates, start=1))))

    async def review_file(
        self,
        candidate: ReviewCandidate,
        base_sha: str,
        head_sha: str,
        pr_context: Optional[Dict[str, Any]] = None,
    ) -> Finding:
        """
        Fetches both versions of a file and asks the provider to review it.

        Raises:
            AIReviewException: If the content cannot be fetched or the provider fails.
        """
        if candidate.status == "added":
            old_content = None
            new_content = await self.github.get_file_content(candidate.path, head_sha)
        else:
            old_content, new_content = await asyncio.gather(
                self.github.get_file_content(candidate.path, base_sha),
                self.github.get_file_content(candidate.path, head_sha),
            )
        if new_content is None:
            raise GitHubError(f"Unable to fetch file content for {candidate.path}")

        prompt = build_review_prompt(
            candidate,
            old_content,
            new_content,
            self.config.review,
            diff=parse_diff(candidate.patch),
            pr_context=pr_context,
        )
        self.log.debug(f"Review prompt for {candidate.path}:\n{prompt}")

        response = await self.provider.generate(prompt, system=system_prompt(self.config.review))
        finding = parse_review_response(response, candidate)
        if finding.summary == INVALID_RESPONSE_SUMMARY:
            self.log.warning(f"Could not parse AI response for {candidate.path}: {finding.concerns[0]}")
        return finding

    async def summarize(self, findings: List[Finding], pr_context: Dict[str, Any]) -> str:
        """Asks the provider for an overall summary, falling back to a statistical one."""
        try:
            summary = await self.provider.generate(
                build_summary_prompt(findings, pr_context),
                system=system_prompt(self.config.review),
            )
        except Exception as e:
            self.log.warning(f"Failed to generate summary: {e}")
            summary = ""
        return summary.strip() or fallback_summary(findings, calculate_stats(findings))

    async def publish(self, pull_number: int, head_sha: str, report: AggregateReport) -> Optional[str]:
        """
        Posts the report as a review when there are inline comments, otherwise as a plain
        comment. A rejected review is retried once as a plain comment.
        """
        if not report.inline_comments:
            return await self.github.post_comment(pull_number, report.body_markdown)
        try:
            response = await self.github.submit_review(
                pull_number,
                head_sha,
                report.body_markdown,
                event=report.review_event,
                comments=report.inline_comments,
            )
            return response.get("html_url")
        except GitHubError as e:
            self.log.warning(f"Failed to submit review: {e}")
            return await self.github.post_comment(pull_number, report.body_markdown)

    async def _existing_comment_keys(self, pull_number: int) -> Set[str]:
        comments = await self.github.get_existing_review_comments(pull_number)
        return {comment_key(c["path"], c["line"]) for c in comments if c.get("path") and c.get("line")}

    async def _pull_request_context(self, pull_number: int) -> Dict[str, Any]:
        try:
            pr = await self.github.get_pull_request(pull_number)
        except GitHubError as e:
            self.log.warning(f"Failed to get PR context: {e}")
            return {}
        return {
            "title": pr.get("title"),
            "body": pr.get("body"),
            "author": (pr.get("user") or {}).get("login"),
            "base_branch": (pr.get("base") or {}).get("ref"),
            "head_branch": (pr.get("head") or {}).get("ref"),
        }
