"""CLI entry point for the content intelligence pipeline."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from contentintel.errors import ContentIntelError

console = Console()

IMPACT_COLORS = {"high": "red", "medium": "yellow", "low": "dim"}


class _Group(click.Group):
    """Report domain errors as one red line and exit 1."""

    def invoke(self, ctx: click.Context) -> object:
        try:
            return super().invoke(ctx)
        except ContentIntelError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            raise SystemExit(1)


@click.group(cls=_Group)
@click.version_option(version="0.1.0")
def main() -> None:
    """Monthly content intelligence digests: fetch, analyze, draft, deliver."""


# ---------------------------------------------------------------------------
# run / retry: the pipeline itself
# ---------------------------------------------------------------------------


@main.command()
@click.option("--force", is_flag=True, help="Ignore the enabled flag, run day and completed digest")
def run(force: bool) -> None:
    """Run this month's digest pipeline."""
    from contentintel.pipeline.orchestrator import DigestOrchestrator

    settings = _bootstrap()
    _check_api_key(settings)
    with DigestOrchestrator.from_settings(settings) as orchestrator:
        with console.status("[bold green]Running pipeline..."):
            digest = orchestrator.run(force=force)

    if digest is None:
        console.print("[yellow]Pipeline skipped (see log for the reason).[/yellow]")
        return
    _print_digest_outcome(digest)


@main.command()
@click.argument("digest_id", type=int)
def retry(digest_id: int) -> None:
    """Retry a failed digest from the fetching stage."""
    from contentintel.pipeline.orchestrator import DigestOrchestrator

    settings = _bootstrap()
    _check_api_key(settings)
    with DigestOrchestrator.from_settings(settings) as orchestrator:
        with console.status(f"[bold green]Retrying digest {digest_id}..."):
            digest = orchestrator.retry(digest_id)
    _print_digest_outcome(digest)


# ---------------------------------------------------------------------------
# digests: browse past runs
# ---------------------------------------------------------------------------


@main.group()
def digests() -> None:
    """Browse digests."""


@digests.command("list")
@click.option("--page", default=1, help="Page number (from 1)")
@click.option("--limit", default=20, help="Digests per page")
def digests_list(page: int, limit: int) -> None:
    """List digests, newest first."""
    from contentintel.pipeline.review import list_digests

    settings = _bootstrap()
    with _session(settings) as session:
        rows, total = list_digests(session, page, limit)

    if not rows:
        console.print("[yellow]No digests yet.[/yellow]")
        return

    table = Table(title=f"Digests (page {page}, {total} total)")
    table.add_column("ID", justify="right")
    table.add_column("Period")
    table.add_column("Status")
    table.add_column("Sources", justify="right")
    table.add_column("Recs", justify="right")
    table.add_column("Tasks", justify="right")
    table.add_column("SOPs", justify="right")
    table.add_column("Created")
    for d in rows:
        table.add_row(
            str(d.id),
            d.period,
            _status_style(d.status),
            str(d.sources_fetched),
            str(d.recommendations_generated),
            str(d.task_drafts_created),
            str(d.sop_drafts_created),
            d.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@digests.command("show")
@click.argument("digest_id", type=int)
def digests_show(digest_id: int) -> None:
    """Show a digest with its recommendations and citations."""
    from contentintel.pipeline.review import get_digest

    settings = _bootstrap()
    with _session(settings) as session:
        digest = get_digest(session, digest_id)
        recommendations = list(digest.recommendations)
        citations = {r.id: list(r.citations) for r in recommendations}

    lines = [f"Status: {_status_style(digest.status)}"]
    if digest.error_message:
        lines.append(f"[red]Error: {digest.error_message}[/red]")
    if digest.google_doc_url:
        lines.append(f"Report: {digest.google_doc_url}")
    console.print(Panel("\n".join(lines), title=f"Digest {digest.id} | {digest.period}"))

    for rec in recommendations:
        color = IMPACT_COLORS.get(rec.impact, "white")
        console.print(
            f"\n[bold]{rec.title}[/bold]  [{color}]{rec.impact}[/{color}] | "
            f"{rec.confidence} | {rec.category}"
        )
        console.print(f"  {rec.summary}")
        for c in citations[rec.id]:
            console.print(f"  [dim]- {c.source_name}: {c.source_url}[/dim]")


# ---------------------------------------------------------------------------
# drafts: task draft review
# ---------------------------------------------------------------------------


@main.group()
def drafts() -> None:
    """Review task drafts."""


@drafts.command("list")
@click.option("--digest", "digest_id", type=int, help="Only drafts of this digest")
@click.option(
    "--status",
    type=click.Choice(["pending", "approved", "rejected"]),
    default=None,
    help="Filter by status",
)
def drafts_list(digest_id: int | None, status: str | None) -> None:
    """List task drafts."""
    from contentintel.pipeline.review import list_task_drafts

    settings = _bootstrap()
    with _session(settings) as session:
        rows = list_task_drafts(session, digest_id, status)

    if not rows:
        console.print("[yellow]No task drafts found.[/yellow]")
        return

    table = Table(title="Task Drafts")
    table.add_column("ID", justify="right")
    table.add_column("Digest", justify="right")
    table.add_column("Title", width=50)
    table.add_column("Priority")
    table.add_column("Due (days)", justify="right")
    table.add_column("Status")
    for d in rows:
        table.add_row(
            str(d.id),
            str(d.digest_id),
            d.title,
            d.suggested_priority,
            str(d.suggested_due_in_days),
            d.status,
        )
    console.print(table)


@drafts.command("approve")
@click.argument("draft_id", type=int)
@click.option("--project", "project_id", required=True, help="Project to create the task in")
@click.option("--due", type=click.DateTime(formats=["%Y-%m-%d"]), help="Override the due date")
@click.option("--assignee", multiple=True, help="Assignee id (repeatable)")
def drafts_approve(
    draft_id: int, project_id: str, due: datetime | None, assignee: tuple[str, ...]
) -> None:
    """Approve a task draft, creating the task."""
    from contentintel.pipeline.review import approve_task_draft
    from contentintel.pipeline.stores import SqlTaskStore

    settings = _bootstrap()
    with _session(settings) as session:
        draft = approve_task_draft(
            session, SqlTaskStore(), draft_id, project_id, due, list(assignee) or None
        )
    console.print(f"[green]Approved draft {draft.id} as task {draft.task_id}[/green]")


@drafts.command("bulk-approve")
@click.argument("draft_ids", type=int, nargs=-1, required=True)
@click.option("--project", "project_id", required=True, help="Project to create the tasks in")
def drafts_bulk_approve(draft_ids: tuple[int, ...], project_id: str) -> None:
    """Approve several task drafts; non-pending ones are skipped."""
    from contentintel.pipeline.review import bulk_approve_task_drafts
    from contentintel.pipeline.stores import SqlTaskStore

    settings = _bootstrap()
    with _session(settings) as session:
        result = bulk_approve_task_drafts(session, SqlTaskStore(), list(draft_ids), project_id)
    console.print(f"[green]Approved {len(result.approved)} drafts[/green]")
    if result.skipped:
        console.print(f"[yellow]Skipped: {', '.join(map(str, result.skipped))}[/yellow]")


@drafts.command("reject")
@click.argument("draft_id", type=int)
def drafts_reject(draft_id: int) -> None:
    """Reject a task draft."""
    from contentintel.pipeline.review import reject_task_draft

    settings = _bootstrap()
    with _session(settings) as session:
        reject_task_draft(session, draft_id)
    console.print(f"Rejected draft {draft_id}")


# ---------------------------------------------------------------------------
# sop: SOP draft review
# ---------------------------------------------------------------------------


@main.group()
def sop() -> None:
    """Review SOP drafts."""


@sop.command("list")
@click.option("--digest", "digest_id", type=int, help="Only drafts of this digest")
@click.option(
    "--status",
    type=click.Choice(["pending", "applied", "dismissed"]),
    default=None,
    help="Filter by status",
)
def sop_list(digest_id: int | None, status: str | None) -> None:
    """List SOP drafts."""
    from contentintel.pipeline.review import list_sop_drafts

    settings = _bootstrap()
    with _session(settings) as session:
        rows = list_sop_drafts(session, digest_id, status)

    if not rows:
        console.print("[yellow]No SOP drafts found.[/yellow]")
        return

    table = Table(title="SOP Drafts")
    table.add_column("ID", justify="right")
    table.add_column("Digest", justify="right")
    table.add_column("Type")
    table.add_column("SOP", width=40)
    table.add_column("Status")
    for d in rows:
        table.add_row(str(d.id), str(d.digest_id), d.draft_type, d.sop_title or "", d.status)
    console.print(table)


@sop.command("show")
@click.argument("draft_id", type=int)
def sop_show(draft_id: int) -> None:
    """Print a draft's proposed content."""
    from contentintel.storage.models import SopDraft

    settings = _bootstrap()
    with _session(settings) as session:
        draft = session.get(SopDraft, draft_id)
    if draft is None:
        console.print(f"[red]SOP draft {draft_id} not found[/red]")
        raise SystemExit(1)
    console.print(Panel(draft.description, title=f"{draft.draft_type}: {draft.sop_title}"))
    console.print(Markdown(draft.after_content))


@sop.command("apply")
@click.argument("draft_id", type=int)
def sop_apply(draft_id: int) -> None:
    """Write an SOP draft to its document."""
    from contentintel.delivery.documents import build_document_service
    from contentintel.pipeline.review import apply_sop_draft
    from contentintel.storage.settings import get_pipeline_settings

    settings = _bootstrap()
    documents = build_document_service(settings)
    with _session(settings) as session:
        folder = get_pipeline_settings(session).sop_folder_id or None
        draft = apply_sop_draft(session, documents, draft_id, folder)
    console.print(f"[green]Applied SOP draft {draft.id}: {draft.sop_doc_id}[/green]")


@sop.command("dismiss")
@click.argument("draft_id", type=int)
def sop_dismiss(draft_id: int) -> None:
    """Dismiss an SOP draft."""
    from contentintel.pipeline.review import dismiss_sop_draft

    settings = _bootstrap()
    with _session(settings) as session:
        dismiss_sop_draft(session, draft_id)
    console.print(f"Dismissed SOP draft {draft_id}")


@sop.command("edit")
@click.argument("draft_id", type=int)
@click.option("--file", "-f", "file_path", type=click.Path(exists=True), required=True,
              help="Markdown file with the new content")
def sop_edit(draft_id: int, file_path: str) -> None:
    """Replace an SOP draft's proposed content."""
    from contentintel.pipeline.review import edit_sop_draft

    settings = _bootstrap()
    with _session(settings) as session:
        edit_sop_draft(session, draft_id, Path(file_path).read_text())
    console.print(f"[green]Updated SOP draft {draft_id}[/green]")


@sop.command("documents")
def sop_documents() -> None:
    """List documents in the configured SOP folder (Google Drive only)."""
    from contentintel.delivery.documents import GoogleDocsService
    from contentintel.storage.settings import get_pipeline_settings

    settings = _bootstrap()
    if not settings.google_service_account_key:
        console.print("[yellow]GOOGLE_SERVICE_ACCOUNT_KEY not set.[/yellow]")
        return
    with _session(settings) as session:
        folder = get_pipeline_settings(session).sop_folder_id
    if not folder:
        console.print("[yellow]No SOP folder configured (settings set sop_folder_id ...).[/yellow]")
        return

    docs = GoogleDocsService(settings.google_service_account_key).list_documents(folder)
    table = Table(title="SOP Documents")
    table.add_column("ID")
    table.add_column("Name")
    for doc in docs:
        table.add_row(doc["id"], doc["name"])
    console.print(table)


# ---------------------------------------------------------------------------
# sources: the source registry
# ---------------------------------------------------------------------------


@main.group()
def sources() -> None:
    """Manage content sources."""


@sources.command("list")
def sources_list() -> None:
    """List configured sources."""
    from contentintel.sources.registry import list_sources

    settings = _bootstrap()
    with _session(settings) as session:
        rows = list_sources(session)

    if not rows:
        console.print("[yellow]No sources configured. Try `contentintel sources seed`.[/yellow]")
        return

    table = Table(title="Sources")
    table.add_column("ID", justify="right")
    table.add_column("Name", width=30)
    table.add_column("Tier")
    table.add_column("Category")
    table.add_column("Method")
    table.add_column("Active")
    table.add_column("Last fetched")
    for s in rows:
        table.add_row(
            str(s.id),
            s.name,
            s.tier,
            s.category,
            s.fetch_method,
            "yes" if s.active else "[dim]no[/dim]",
            s.last_fetched_at.strftime("%Y-%m-%d") if s.last_fetched_at else "-",
        )
    console.print(table)


_TIERS = click.Choice(["tier_1", "tier_2", "tier_3"])
_METHODS = click.Choice(["rss", "podcast", "youtube", "reddit", "webpage"])


@sources.command("add")
@click.option("--name", "-n", required=True, help="Display name")
@click.option("--url", "-u", required=True, help="Feed, channel, subreddit or page URL")
@click.option("--tier", type=_TIERS, default="tier_3", help="Authority tier")
@click.option("--category", "-c", default="general", help="Topic category")
@click.option("--method", "-m", "fetch_method", type=_METHODS, default="rss", help="Fetch method")
@click.option("--config", "fetch_config", help="Fetch config as JSON, e.g. '{\"channelId\": \"...\"}'")
def sources_add(
    name: str, url: str, tier: str, category: str, fetch_method: str, fetch_config: str | None
) -> None:
    """Add a source."""
    from contentintel.sources.registry import create_source

    settings = _bootstrap()
    with _session(settings) as session:
        source = create_source(
            session, name, url, tier, category, fetch_method, _parse_json(fetch_config)
        )
    console.print(f"[green]Added source {source.id}: {source.name}[/green]")


@sources.command("update")
@click.argument("source_id", type=int)
@click.option("--name", "-n", help="Display name")
@click.option("--url", "-u", help="Source URL")
@click.option("--tier", type=_TIERS, help="Authority tier")
@click.option("--category", "-c", help="Topic category")
@click.option("--method", "-m", "fetch_method", type=_METHODS, help="Fetch method")
@click.option("--config", "fetch_config", help="Fetch config as JSON")
@click.option("--active/--inactive", default=None, help="Enable or disable the source")
def sources_update(source_id: int, fetch_config: str | None, **changes: object) -> None:
    """Update a source."""
    from contentintel.sources.registry import update_source

    settings = _bootstrap()
    if fetch_config is not None:
        changes["fetch_config"] = _parse_json(fetch_config)
    with _session(settings) as session:
        source = update_source(session, source_id, **changes)
    console.print(f"[green]Updated source {source.id}: {source.name}[/green]")


@sources.command("remove")
@click.argument("source_id", type=int)
def sources_remove(source_id: int) -> None:
    """Delete a source."""
    from contentintel.sources.registry import delete_source

    settings = _bootstrap()
    with _session(settings) as session:
        delete_source(session, source_id)
    console.print(f"Removed source {source_id}")


@sources.command("test")
@click.argument("source_id", type=int)
def sources_test(source_id: int) -> None:
    """Fetch one source and preview what it returns."""
    from contentintel.fetchers.registry import FetcherRegistry
    from contentintel.sources.registry import test_source

    settings = _bootstrap()
    fetchers = FetcherRegistry.from_settings(settings)
    try:
        with _session(settings) as session:
            with console.status("[green]Fetching..."):
                report = test_source(session, source_id, fetchers)
    finally:
        fetchers.close()

    console.print(
        f"\n[bold]{report.source_name}[/bold] ({report.fetch_method}): "
        f"{report.articles_found} articles\n"
    )
    for p in report.previews:
        date = p.published_at.strftime("%Y-%m-%d") if p.published_at else "undated"
        console.print(f"  [bold]{p.title}[/bold] [dim]({date})[/dim]")
        console.print(f"  [dim]{p.url}[/dim]")
        console.print(f"  {p.preview}\n")


@sources.command("seed")
def sources_seed() -> None:
    """Insert the default source catalog (skips names already present)."""
    from contentintel.sources.registry import seed_sources

    settings = _bootstrap()
    with _session(settings) as session:
        added = seed_sources(session)
    console.print(f"[green]Seeded {added} sources[/green]")


# ---------------------------------------------------------------------------
# history / cleanup / settings
# ---------------------------------------------------------------------------


@main.command()
@click.option(
    "--job",
    type=click.Choice(["content_intelligence_pipeline", "content_cleanup"]),
    default="content_intelligence_pipeline",
    help="Job name",
)
@click.option("--limit", "-n", default=20, help="Number of runs")
def history(job: str, limit: int) -> None:
    """Show recent job runs."""
    from contentintel.pipeline.jobs import JobHistory
    from contentintel.storage.database import session_factory

    settings = _bootstrap()
    runs = JobHistory(session_factory(settings.db_path)).recent(job, limit)
    if not runs:
        console.print(f"[yellow]No runs of {job} yet.[/yellow]")
        return

    table = Table(title=f"Job history: {job}")
    table.add_column("ID", justify="right")
    table.add_column("Started")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Details", width=60)
    for r in runs:
        duration = (
            f"{(r.completed_at - r.started_at).total_seconds():.0f}s" if r.completed_at else "-"
        )
        details = ", ".join(f"{k}={v}" for k, v in r.details.items())
        table.add_row(
            str(r.id),
            r.started_at.strftime("%Y-%m-%d %H:%M"),
            _status_style(r.status),
            duration,
            details,
        )
    console.print(table)


@main.command()
def cleanup() -> None:
    """Delete stored article content older than the retention window."""
    from contentintel.pipeline.cleanup import run_cleanup
    from contentintel.storage.database import session_factory

    settings = _bootstrap()
    deleted = run_cleanup(session_factory(settings.db_path))
    console.print(f"[green]Deleted {deleted} old fetch results[/green]")


@main.group("settings")
def settings_group() -> None:
    """Show or change pipeline settings."""


@settings_group.command("show")
def settings_show() -> None:
    """Show the persisted pipeline settings."""
    from contentintel.storage.settings import EDITABLE_FIELDS, get_pipeline_settings

    settings = _bootstrap()
    with _session(settings) as session:
        current = get_pipeline_settings(session)

    table = Table(title="Pipeline settings")
    table.add_column("Key")
    table.add_column("Value")
    for key in EDITABLE_FIELDS:
        table.add_row(key, str(getattr(current, key)))
    console.print(table)


@settings_group.command("set")
@click.argument("key")
@click.argument("value")
def settings_set(key: str, value: str) -> None:
    """Change one pipeline setting, e.g. `settings set enabled true`."""
    from contentintel.storage.settings import EDITABLE_FIELDS, update_pipeline_settings

    settings = _bootstrap()
    kind = EDITABLE_FIELDS.get(key)
    try:
        if kind is bool:
            converted: object = click.BOOL.convert(value, None, None)
        elif kind is int:
            converted = int(value)
        else:
            converted = value
    except (click.BadParameter, ValueError):
        console.print(f"[bold red]Error:[/bold red] invalid value for {key}: {value}")
        raise SystemExit(1)

    with _session(settings) as session:
        update_pipeline_settings(session, **{key: converted})
    console.print(f"[green]{key} = {converted}[/green]")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _bootstrap():
    """Load settings and configure logging."""
    from contentintel.config import get_settings
    from contentintel.log import setup_logging

    settings = get_settings()
    setup_logging(settings.log_level)
    return settings


def _session(settings: object):
    from contentintel.storage.database import get_session

    return get_session(settings.db_path)


def _check_api_key(settings: object) -> None:
    """Exit with a helpful message if the API key is not set."""
    if not getattr(settings, "anthropic_api_key", ""):
        console.print(
            "[bold red]Error:[/bold red] ANTHROPIC_API_KEY not set.\n"
            "Add it to .env or the environment."
        )
        raise SystemExit(1)


def _parse_json(value: str | None) -> dict | None:
    import json

    if value is None:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise click.BadParameter("fetch config must be a JSON object")
    return parsed


def _status_style(status: str) -> str:
    color = {
        "completed": "green",
        "failed": "red",
        "running": "cyan",
        "pending": "dim",
    }.get(status, "cyan")
    return f"[{color}]{status}[/{color}]"


def _print_digest_outcome(digest: object) -> None:
    if digest.status == "failed":
        console.print(
            f"[bold red]Digest {digest.id} failed:[/bold red] {digest.error_message}\n"
            f"Retry with: contentintel retry {digest.id}"
        )
        raise SystemExit(1)
    console.print(
        Panel(
            f"Sources fetched: {digest.sources_fetched}\n"
            f"Recommendations: {digest.recommendations_generated}\n"
            f"Task drafts: {digest.task_drafts_created}\n"
            f"SOP drafts: {digest.sop_drafts_created}\n"
            f"Report: {digest.google_doc_url or '-'}",
            title=f"Digest {digest.id} | {digest.period} | {digest.status}",
        )
    )
