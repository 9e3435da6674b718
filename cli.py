import asyncio
import json
import os
import sys
import uuid
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from config.logic import load_and_merge_configs
from config.models import Config
from core.contracts.models import ChangedFile, ReviewResult
from core.llm.router import get_provider
from core.pipeline import ReviewPipeline
from core.selector import FileSelector, file_stats
from utils.errors import AIReviewException
from utils.github import GitHubClient
from utils.logger import setup_logger, logger

PULL_REQUEST_EVENTS = ("pull_request", "pull_request_target")


def build_cli_overrides(provider: Optional[str], model: Optional[str], repo: Optional[str]) -> Dict[str, Any]:
    """将CLI选项转换为最高优先级的配置层"""
    overrides: Dict[str, Any] = {}
    if provider:
        overrides.setdefault("model", {})["provider"] = provider
        logger.info(f"使用 provider 覆盖配置: {provider}")
    if model:
        overrides.setdefault("model", {})["name"] = model
        logger.info(f"使用 model 覆盖配置: {model}")
    if repo:
        overrides["github"] = {"repository": repo}
        logger.info(f"使用 repository 覆盖配置: {repo}")
    return overrides


def load_event(environ=None) -> Optional[Dict[str, Any]]:
    """
    读取 GitHub Actions 事件负载。非 pull request 事件返回 None。
    """
    environ = os.environ if environ is None else environ
    event_name = environ.get("GITHUB_EVENT_NAME", "")
    if event_name and event_name not in PULL_REQUEST_EVENTS:
        return None

    event_path = environ.get("GITHUB_EVENT_PATH")
    if not event_path:
        raise AIReviewException("GITHUB_EVENT_PATH 未设置。请在 GitHub Actions 中运行，或使用 --pr/--base/--head 指定 PR。")
    try:
        with open(event_path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, ValueError) as e:
        raise AIReviewException(f"无法读取事件文件 {event_path}: {e}") from e
    if not payload.get("pull_request"):
        return None
    return payload


def write_outputs(result: ReviewResult, environ=None) -> None:
    """将结果写入 $GITHUB_OUTPUT，未设置时跳过"""
    environ = os.environ if environ is None else environ
    output_path = environ.get("GITHUB_OUTPUT")
    if not output_path:
        return

    outputs = {
        "review-summary": result.summary,
        "issues-found": str(result.issues_found),
        "files-reviewed": str(result.files_reviewed),
        "review-url": result.review_url or "",
    }
    with open(output_path, "a", encoding="utf-8") as f:
        for name, value in outputs.items():
            delimiter = f"ghadelimiter_{uuid.uuid4()}"
            f.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")


async def run_review(config: Config, pull_number: int, base_sha: str, head_sha: str, dry_run: bool) -> ReviewResult:
    """
    初始化客户端并运行审查流水线
    """
    github = GitHubClient(config.github)
    try:
        provider = get_provider(config.model)
    except AIReviewException:
        await github.aclose()
        raise
    try:
        pipeline = ReviewPipeline(config, github, provider)
        return await pipeline.run(pull_number, base_sha, head_sha, dry_run=dry_run)
    finally:
        await provider.aclose()
        await github.aclose()


@click.group(invoke_without_command=True)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="启用详细日志记录以进行调试",
)
@click.pass_context
def cli(ctx, verbose: bool):
    """
    AI 驱动的 Pull Request 代码审查工具。

    如果未指定子命令，则默认运行 'review'。
    """
    setup_logger(log_level="DEBUG" if verbose else "INFO")
    ctx.obj = {'verbose': verbose}

    if ctx.invoked_subcommand is None:
        ctx.invoke(review)


@cli.command("review")
@click.option(
    "-c", "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="自定义配置文件的路径",
)
@click.option("--pr", "pull_number", type=int, help="要审查的 PR 编号 (默认读取 GITHUB_EVENT_PATH)")
@click.option("--base", "base_sha", type=str, help="PR 的基准提交")
@click.option("--head", "head_sha", type=str, help="PR 的头部提交")
@click.option("--repo", type=str, help="覆盖仓库名称 (owner/repo)")
@click.option("--provider", type=str, help="覆盖 LLM provider (例如 'anthropic')")
@click.option("--model", type=str, help="覆盖 LLM 模型名称 (例如 'gpt-4o-mini')")
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="生成审查报告但不发布到 GitHub",
)
@click.pass_context
def review(
    ctx,
    config_path: Optional[str] = None,
    pull_number: Optional[int] = None,
    base_sha: Optional[str] = None,
    head_sha: Optional[str] = None,
    repo: Optional[str] = None,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    dry_run: bool = False,
):
    """
    审查一个 Pull Request 并发布结果。
    """
    console = Console()
    verbose = (ctx.obj or {}).get('verbose', False)

    try:
        config = load_and_merge_configs(
            custom_config_path=config_path,
            cli_overrides=build_cli_overrides(provider, model, repo),
        )

        if pull_number is None or not base_sha or not head_sha:
            event = load_event()
            if event is None:
                logger.warning("此操作仅在 pull request 事件上运行，已跳过。")
                return
            pr = event["pull_request"]
            pull_number = pull_number or pr["number"]
            base_sha = base_sha or pr["base"]["sha"]
            head_sha = head_sha or pr["head"]["sha"]
            if not config.github.repository:
                config.github.repository = (event.get("repository") or {}).get("full_name")

        with console.status("[bold green]正在审查代码...[/bold green]"):
            result = asyncio.run(run_review(config, pull_number, base_sha, head_sha, dry_run))

        write_outputs(result)

        if dry_run:
            body = result.report.body_markdown if result.report else result.summary
            console.print(Panel(
                Markdown(body),
                title=f"[bold cyan]PR #{pull_number} 审查报告[/bold cyan]",
                border_style="cyan",
                expand=False,
            ))
            console.print("\n[yellow]当前为预览模式。要发布审查，请移除 '--dry-run' 参数。[/yellow]")
        else:
            console.print(
                f"\n[bold green]✅ 审查完成![/bold green] "
                f"{result.files_reviewed} 个文件, {result.issues_found} 个问题"
            )
            if result.review_url:
                console.print(f"🔗 {result.review_url}")

    except AIReviewException as e:
        logger.error(f"发生已知错误: {e}")
        console.print(f"[bold red]错误:[/bold red] {e}")
        sys.exit(1)
    except Exception as e:
        logger.opt(exception=verbose).error(f"发生未知错误: {e}")
        console.print(f"[bold red]发生未知错误:[/bold red] {e}")
        sys.exit(1)


@cli.command("select")
@click.argument("files_json", type=click.File("r", encoding="utf-8"))
@click.option(
    "-c", "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="自定义配置文件的路径",
)
@click.option("--max-files", type=click.IntRange(1, 100), help="覆盖最多审查的文件数")
def select(files_json, config_path: Optional[str], max_files: Optional[int]):
    """
    对 GitHub compare 返回的文件列表 (JSON) 运行文件筛选，并显示排序结果。
    """
    console = Console()
    try:
        files = json.load(files_json)
    except ValueError as e:
        console.print(f"[bold red]错误:[/bold red] 无效的 JSON: {e}")
        sys.exit(1)
    if isinstance(files, dict):
        files = files.get("files") or []

    try:
        config = load_and_merge_configs(custom_config_path=config_path)
    except AIReviewException as e:
        console.print(f"[bold red]错误:[/bold red] {e}")
        sys.exit(1)
    review_config = config.review
    if max_files:
        review_config = review_config.model_copy(update={"max_files": max_files})

    candidates = FileSelector(review_config).select([ChangedFile.from_github(f) for f in files])

    table = Table(title=f"已选择 {len(candidates)} / {len(files)} 个文件")
    table.add_column("#", justify="right")
    table.add_column("Priority", justify="right", style="bold")
    table.add_column("Path", style="cyan")
    table.add_column("Language")
    table.add_column("Status")
    table.add_column("Changes", justify="right")
    for index, candidate in enumerate(candidates, start=1):
        table.add_row(
            str(index),
            str(candidate.priority),
            candidate.path,
            candidate.language,
            candidate.status,
            str(candidate.change_count),
        )
    console.print(table)

    stats = file_stats(candidates)
    console.print(
        f"Total: {stats.total}, changes: {stats.total_changes}\n"
        f"By language: {stats.by_language}\n"
        f"By status: {stats.by_status}"
    )


if __name__ == "__main__":
    cli()
