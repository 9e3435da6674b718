import asyncio
import json
import unittest
from unittest.mock import AsyncMock

from config.models import Config, ModelConfig, ReviewConfig
from core.contracts.models import ChangedFile, InlineComment
from core.llm.providers.dummy_provider import DummyProvider
from core.pipeline import NO_FILES_MESSAGE, ReviewPipeline
from utils.errors import GitHubError, ProviderError

REVIEW_RESPONSE = json.dumps({
    "summary": "Adds input handling",
    "issues": [
        {"type": "error", "line": 2, "message": "Unvalidated input", "suggestion": "Validate it", "category": "security"},
        {"type": "suggestion", "message": "Add tests", "category": "maintainability"},
    ],
    "score": 70,
    "strengths": ["Small change"],
    "concerns": [],
})


class FakeProvider:
    """Answers review prompts with a canned finding and summary prompts with prose."""

    def __init__(self, review_response=REVIEW_RESPONSE, fail_for=()):
        self.review_response = review_response
        self.fail_for = fail_for
        self.prompts = []

    async def generate(self, prompt, *, system=None):
        self.prompts.append(prompt)
        for path in self.fail_for:
            if f"code changes in {path} " in prompt:
                raise ProviderError(f"model unavailable for {path}")
        if "Please review the following code changes" in prompt:
            return self.review_response
        return "Overall the change is reasonable."

    async def aclose(self):
        return None


def make_github(files):
    github = AsyncMock()
    github.get_changed_files.return_value = files
    github.get_file_content.side_effect = lambda path, ref: f"# {path} at {ref}\nvalue = 1\n"
    github.get_existing_review_comments.return_value = []
    github.get_pull_request.return_value = {
        "title": "Handle input",
        "body": "Adds input handling",
        "user": {"login": "octocat"},
        "base": {"ref": "main"},
        "head": {"ref": "feature"},
    }
    github.post_comment.return_value = "https://github.com/octo/widgets/pull/7#issuecomment-1"
    github.submit_review.return_value = {"html_url": "https://github.com/octo/widgets/pull/7#pullrequestreview-1"}
    return github


class TestReviewPipeline(unittest.TestCase):
    def setUp(self):
        self.config = Config(
            model=ModelConfig(provider="dummy"),
            review=ReviewConfig(exclude_patterns=["*.lock"], concurrency=2),
        )
        self.files = [
            ChangedFile(path="src/app.py", status="modified", change_count=3,
                        patch="@@ -1,1 +1,2 @@\n value = 1\n+data = input()"),
            ChangedFile(path="poetry.lock", status="modified", change_count=80),
        ]

    def run_pipeline(self, github, provider, **kwargs):
        pipeline = ReviewPipeline(self.config, github, provider)
        return asyncio.run(pipeline.run(7, "base123", "head456", **kwargs))

    def test_review_with_issues_submits_review(self):
        github = make_github(self.files)
        provider = FakeProvider()

        result = self.run_pipeline(github, provider)

        self.assertEqual(result.files_reviewed, 1)
        self.assertEqual(result.issues_found, 2)
        self.assertEqual(result.summary, "Overall the change is reasonable.")
        self.assertEqual(result.review_url, "https://github.com/octo/widgets/pull/7#pullrequestreview-1")
        github.post_comment.assert_not_called()

        args, kwargs = github.submit_review.call_args
        self.assertEqual(args[:2], (7, "head456"))
        self.assertEqual(kwargs["event"], "REQUEST_CHANGES")
        self.assertEqual([(c.path, c.line) for c in kwargs["comments"]], [("src/app.py", 2)])
        self.assertIn("**Score:** 70/100", args[2])

        review_prompt = provider.prompts[0]
        self.assertIn("# src/app.py at base123", review_prompt)
        self.assertIn("# src/app.py at head456", review_prompt)
        self.assertIn("+ L2: data = input()", review_prompt)
        self.assertIn("PR Title: Handle input", review_prompt)

    def test_clean_review_posts_comment(self):
        github = make_github(self.files)
        provider = DummyProvider(self.config.model)

        result = self.run_pipeline(github, provider)

        self.assertEqual(result.issues_found, 0)
        self.assertEqual(result.review_url, "https://github.com/octo/widgets/pull/7#issuecomment-1")
        github.submit_review.assert_not_called()
        body = github.post_comment.call_args[0][1]
        self.assertIn("**Recommendation:** Approve", body)

    def test_no_candidates_posts_notice(self):
        github = make_github([ChangedFile(path="logo.png", status="added"), ChangedFile(path="yarn.lock")])

        result = self.run_pipeline(github, FakeProvider())

        self.assertEqual(result.files_reviewed, 0)
        self.assertEqual(result.summary, NO_FILES_MESSAGE)
        github.post_comment.assert_called_once_with(7, NO_FILES_MESSAGE)
        github.get_file_content.assert_not_called()

    def test_dry_run_publishes_nothing(self):
        github = make_github(self.files)

        result = self.run_pipeline(github, FakeProvider(), dry_run=True)

        self.assertIsNone(result.review_url)
        self.assertIsNotNone(result.report)
        self.assertEqual(len(result.report.inline_comments), 1)
        github.post_comment.assert_not_called()
        github.submit_review.assert_not_called()

    def test_failed_file_degrades_and_others_continue(self):
        files = [
            ChangedFile(path="src/app.py", status="modified", change_count=3),
            ChangedFile(path="src/broken.py", status="modified", change_count=3),
        ]
        github = make_github(files)

        result = self.run_pipeline(github, FakeProvider(fail_for=["src/broken.py"]), dry_run=True)

        findings = {f.filename: f for f in result.findings}
        self.assertEqual(findings["src/app.py"].score, 70)
        self.assertEqual(findings["src/broken.py"].score, 0)
        self.assertTrue(findings["src/broken.py"].summary.startswith("Review failed: model unavailable"))
        self.assertEqual(result.report.stats.average_score, 35)

    def test_missing_content_degrades(self):
        github = make_github(self.files)
        github.get_file_content.side_effect = lambda path, ref: None

        result = self.run_pipeline(github, FakeProvider(), dry_run=True)

        self.assertEqual(result.findings[0].summary, "Review failed: Unable to fetch file content for src/app.py")

    def test_added_file_fetches_head_only(self):
        github = make_github([ChangedFile(path="src/new.py", status="added", change_count=5)])
        provider = FakeProvider()

        self.run_pipeline(github, provider, dry_run=True)

        github.get_file_content.assert_called_once_with("src/new.py", "head456")
        self.assertIn("(new file)", provider.prompts[0])

    def test_unparseable_response_is_kept(self):
        github = make_github(self.files)

        result = self.run_pipeline(github, FakeProvider(review_response="no json here"), dry_run=True)

        self.assertEqual(result.findings[0].summary, "Analysis completed but response format was invalid")
        self.assertEqual(result.issues_found, 0)

    def test_existing_comments_are_not_repeated(self):
        github = make_github(self.files)
        github.get_existing_review_comments.return_value = [{"path": "src/app.py", "line": 2, "body": "old"}]

        self.run_pipeline(github, FakeProvider())

        github.submit_review.assert_not_called()
        github.post_comment.assert_called_once()

    def test_rejected_review_falls_back_to_comment(self):
        github = make_github(self.files)
        github.submit_review.side_effect = GitHubError("Unprocessable Entity", 422)

        result = self.run_pipeline(github, FakeProvider())

        self.assertEqual(result.review_url, "https://github.com/octo/widgets/pull/7#issuecomment-1")
        github.post_comment.assert_called_once()

    def test_summary_failure_uses_fallback(self):
        github = make_github(self.files)
        provider = FakeProvider()
        provider.generate = AsyncMock(side_effect=[REVIEW_RESPONSE, ProviderError("quota")])

        result = self.run_pipeline(github, provider, dry_run=True)

        self.assertIn("**Files Reviewed:** 1", result.summary)
        self.assertIn("**Average Score:** 70/100", result.summary)

    def test_missing_pr_context_is_tolerated(self):
        github = make_github(self.files)
        github.get_pull_request.side_effect = GitHubError("Not Found", 404)
        provider = FakeProvider()

        result = self.run_pipeline(github, provider, dry_run=True)

        self.assertEqual(result.files_reviewed, 1)
        self.assertNotIn("PR Title:", provider.prompts[0])

    def test_findings_keep_priority_order(self):
        files = [
            ChangedFile(path="docs/readme.md", status="modified", change_count=1),
            ChangedFile(path="src/auth/login.js", status="modified", change_count=1),
            ChangedFile(path="tools/build.py", status="modified", change_count=1),
        ]
        github = make_github(files)

        result = self.run_pipeline(github, DummyProvider(self.config.model), dry_run=True)

        self.assertEqual(
            [f.filename for f in result.findings],
            ["src/auth/login.js", "tools/build.py", "docs/readme.md"],
        )


if __name__ == "__main__":
    unittest.main()
