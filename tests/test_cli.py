import json
from unittest.mock import AsyncMock

import pytest
from click.testing import CliRunner

from cli import cli, load_event, write_outputs
from core.contracts.models import ChangedFile, ReviewResult
from utils.errors import AIReviewException

COMPARE_FILES = [
    {"filename": "docs/guide.md", "status": "modified", "changes": 4},
    {"filename": "src/auth/login.js", "status": "modified", "changes": 40},
    {"filename": "package-lock.json", "status": "modified", "changes": 500},
    {"filename": "logo.png", "status": "added", "changes": 0},
]


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def files_json(tmp_path):
    path = tmp_path / "files.json"
    path.write_text(json.dumps(COMPARE_FILES), encoding="utf-8")
    return path


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "aireview.yaml"
    path.write_text(
        "model:\n  provider: dummy\n"
        "review:\n  exclude_patterns:\n    - \"*-lock.json\"\n"
        "github:\n  token: ghs_test\n  repository: octo/widgets\n",
        encoding="utf-8",
    )
    return path


def test_select_prints_ranked_candidates(runner, files_json, config_file):
    result = runner.invoke(cli, ["select", str(files_json), "-c", str(config_file)], env={"COLUMNS": "200"})

    assert result.exit_code == 0, result.output
    assert "src/auth/login.js" in result.output
    assert "docs/guide.md" in result.output
    assert "package-lock.json" not in result.output.split("By language")[0]
    assert result.output.index("src/auth/login.js") < result.output.index("docs/guide.md")
    assert "Total: 2, changes: 44" in result.output


def test_select_respects_max_files(runner, files_json, config_file):
    result = runner.invoke(
        cli, ["select", str(files_json), "-c", str(config_file), "--max-files", "1"], env={"COLUMNS": "200"}
    )

    assert result.exit_code == 0, result.output
    assert "src/auth/login.js" in result.output
    assert "docs/guide.md" not in result.output


def test_select_invalid_json(runner, tmp_path):
    path = tmp_path / "files.json"
    path.write_text("not json", encoding="utf-8")

    result = runner.invoke(cli, ["select", str(path)])

    assert result.exit_code == 1


def test_review_skips_non_pull_request_events(runner, config_file, mocker):
    mock_run = mocker.patch("cli.run_review")

    result = runner.invoke(cli, ["review", "-c", str(config_file)], env={"GITHUB_EVENT_NAME": "push"})

    assert result.exit_code == 0, result.output
    mock_run.assert_not_called()


def test_review_dry_run(runner, config_file, tmp_path, mocker):
    github = AsyncMock()
    github.get_changed_files.return_value = [
        ChangedFile(path="src/app.py", status="modified", change_count=2, patch="@@ -1 +1,2 @@\n a\n+b")
    ]
    github.get_file_content.return_value = "a\nb\n"
    github.get_existing_review_comments.return_value = []
    github.get_pull_request.return_value = {"title": "Tweak"}
    mocker.patch("cli.GitHubClient", return_value=github)
    output_file = tmp_path / "github_output"

    result = runner.invoke(
        cli,
        ["review", "-c", str(config_file), "--pr", "7", "--base", "base123", "--head", "head456", "--dry-run"],
        env={"GITHUB_OUTPUT": str(output_file), "COLUMNS": "200"},
    )

    assert result.exit_code == 0, result.output
    assert "PR Review" in result.output
    github.post_comment.assert_not_called()
    github.submit_review.assert_not_called()
    github.aclose.assert_awaited_once()

    outputs = output_file.read_text(encoding="utf-8")
    assert "files-reviewed<<ghadelimiter_" in outputs
    assert "\n1\n" in outputs
    assert "issues-found<<" in outputs


def test_review_reports_known_errors(runner, config_file, mocker):
    mocker.patch("cli.run_review", side_effect=AIReviewException("GitHub token not found"))

    result = runner.invoke(cli, ["review", "-c", str(config_file), "--pr", "7", "--base", "a", "--head", "b"])

    assert result.exit_code == 1
    assert "GitHub token not found" in result.output


def test_review_provider_flag_selects_matching_api_key(runner, config_file, mocker):
    mock_run = mocker.patch("cli.run_review", new=AsyncMock(return_value=ReviewResult(summary="done")))

    result = runner.invoke(
        cli,
        ["review", "-c", str(config_file), "--pr", "7", "--base", "a", "--head", "b",
         "--provider", "anthropic", "--model", "claude-3-5-sonnet", "--repo", "octo/other"],
        env={"INPUT_OPENAI-API-KEY": "sk-openai", "INPUT_ANTHROPIC-API-KEY": "sk-ant"},
    )

    assert result.exit_code == 0, result.output
    config = mock_run.await_args[0][0]
    assert config.model.provider == "anthropic"
    assert config.model.name == "claude-3-5-sonnet"
    assert config.model.api_key == "sk-ant"
    assert config.github.repository == "octo/other"


def test_review_rejects_unknown_provider_flag(runner, config_file, mocker):
    mock_run = mocker.patch("cli.run_review")

    result = runner.invoke(
        cli, ["review", "-c", str(config_file), "--pr", "7", "--base", "a", "--head", "b", "--provider", "nope"]
    )

    assert result.exit_code == 1
    assert "Configuration validation failed" in result.output
    mock_run.assert_not_called()


def test_load_event_pull_request(tmp_path):
    event_path = tmp_path / "event.json"
    event_path.write_text(json.dumps({
        "pull_request": {"number": 7, "base": {"sha": "base123"}, "head": {"sha": "head456"}},
        "repository": {"full_name": "octo/widgets"},
    }), encoding="utf-8")

    event = load_event({"GITHUB_EVENT_NAME": "pull_request", "GITHUB_EVENT_PATH": str(event_path)})

    assert event["pull_request"]["number"] == 7


def test_load_event_other_events(tmp_path):
    event_path = tmp_path / "event.json"
    event_path.write_text(json.dumps({"ref": "refs/heads/main"}), encoding="utf-8")

    assert load_event({"GITHUB_EVENT_NAME": "push", "GITHUB_EVENT_PATH": str(event_path)}) is None
    assert load_event({"GITHUB_EVENT_PATH": str(event_path)}) is None


def test_load_event_requires_path():
    with pytest.raises(AIReviewException, match="GITHUB_EVENT_PATH"):
        load_event({"GITHUB_EVENT_NAME": "pull_request"})


def test_write_outputs(tmp_path):
    output_file = tmp_path / "github_output"
    result = ReviewResult(summary="Line one\nLine two", issues_found=3, files_reviewed=2,
                          review_url="https://github.com/octo/widgets/pull/7#issuecomment-1")

    write_outputs(result, {"GITHUB_OUTPUT": str(output_file)})

    lines = output_file.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("review-summary<<ghadelimiter_")
    assert lines[1:3] == ["Line one", "Line two"]
    assert lines[3] == lines[0].split("<<")[1]
    assert "3" in lines
    assert "https://github.com/octo/widgets/pull/7#issuecomment-1" in lines


def test_write_outputs_without_output_file():
    write_outputs(ReviewResult(summary="ok"), {})
