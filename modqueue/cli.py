"""modqueue CLI -- operator entry point for the moderation engine."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from modqueue import __version__
from modqueue.auth.models import Reviewer, Role, Session
from modqueue.auth.permissions import require_role
from modqueue.auth.store import ReviewerStore
from modqueue.config import Settings, load_settings
from modqueue.errors import ModerationError
from modqueue.logging_config import configure_logging

console = Console()

RISK_STYLES = {"low": "green", "medium": "yellow", "high": "red", "critical": "bold red"}


def _engine(settings: Settings):
    from modqueue.engine import ModerationEngine

    return ModerationEngine(settings)


def _reviewers(settings: Settings) -> ReviewerStore:
    return ReviewerStore(settings.data_path / "auth")


def _session(settings: Settings, reviewer_id: str) -> Session:
    reviewer = _reviewers(settings).get_reviewer(reviewer_id)
    if reviewer is None:
        raise click.ClickException(f"Unknown reviewer '{reviewer_id}'. Add one with 'modqueue reviewer add'.")
    return Session(reviewer_id=reviewer.id, role=reviewer.role, device_id="cli")


def _fail(exc: ModerationError) -> None:
    console.print(f"[red]{exc.code}:[/] {exc.message}")
    for key, value in exc.details.items():
        console.print(f"  {key}: {value}")
    raise SystemExit(1)


reviewer_option = click.option(
    "--reviewer", "-r", "reviewer_id", required=True, envvar="MODQUEUE_REVIEWER", help="Acting reviewer id"
)
admin_option = click.option(
    "--reviewer",
    "-r",
    "reviewer_id",
    default=None,
    envvar="MODQUEUE_REVIEWER",
    help="Acting admin (required once any reviewer exists)",
)


def _require_admin(settings: Settings, reviewer_id: Optional[str]) -> None:
    """Reviewer management is admin-only, except for adding the very first reviewer."""
    if not _reviewers(settings).list_reviewers():
        return
    if not reviewer_id:
        raise click.ClickException("--reviewer is required: reviewers can only be managed by an admin")
    try:
        require_role(_session(settings, reviewer_id), Role.admin)
    except ModerationError as exc:
        _fail(exc)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False), help="YAML settings file")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str]):
    """modqueue -- content-moderation workflow engine.

    Ingest flags and reports, work the review queue, and run bulk
    remediation against clips and profiles.
    """
    try:
        settings = load_settings(config_path)
    except ModerationError as exc:
        _fail(exc)
    configure_logging(settings.log_level)
    ctx.obj = settings


# ── Ingest ───────────────────────────────────────────────────────────


@main.command()
@click.argument("batch_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def ingest(settings: Settings, batch_file: str):
    """Ingest a batch of flags and reports.

    BATCH_FILE is JSON or YAML with ``flags``, ``reports``, ``clips`` and
    ``profiles`` lists.
    """
    from modqueue.ingest.normalizer import RawBatch

    text = Path(batch_file).read_text()
    try:
        if batch_file.endswith((".yaml", ".yml")):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise click.ClickException(f"Failed to parse {batch_file}: {e}")
    if not isinstance(data, dict):
        raise click.ClickException(f"{batch_file} must contain an object")

    batch = RawBatch(
        flags=list(data.get("flags") or []),
        reports=list(data.get("reports") or []),
        clips=list(data.get("clips") or []),
        profiles=list(data.get("profiles") or []),
    )
    try:
        result = _engine(settings).ingest(batch)
    except ModerationError as exc:
        _fail(exc)

    console.print(f"\n[bold blue]modqueue[/] — Ingested {batch_file}\n")
    console.print(f"  Flags added:    {result.flags_added}")
    console.print(f"  Reports added:  {result.reports_added}")
    console.print(f"  New subjects:   {result.subjects_registered}")
    if result.dropped:
        console.print(f"  [yellow]Dropped:[/]        {result.dropped}")


# ── Queue ────────────────────────────────────────────────────────────


@main.command()
@reviewer_option
@click.option("--sort", "sort_by", default="priority", type=click.Choice(["priority", "newest", "oldest"]))
@click.option("--risk", default=None, type=click.Choice(["low", "medium", "high", "critical"]))
@click.option("--source", default=None, type=click.Choice(["ai", "community"]))
@click.option("--state", default=None, type=click.Choice(["pending", "in_review", "resolved", "actioned"]))
@click.option("--search", default="", help="Match reasons and details")
@click.option("--limit", default=25, show_default=True)
@click.pass_obj
def queue(settings: Settings, reviewer_id: str, sort_by: str, risk: Optional[str],
          source: Optional[str], state: Optional[str], search: str, limit: int):
    """Show the merged review queue."""
    from modqueue.queue.aggregator import QueueFilters

    filters = QueueFilters(risk_level=risk, source=source, workflow_state=state, search=search)
    try:
        view = _engine(settings).list_queue(_session(settings, reviewer_id), sort_by, filters)
    except ModerationError as exc:
        _fail(exc)

    for title, entries in (("Flags", view.flags), ("Reports", view.reports)):
        if not entries:
            console.print(f"[yellow]No {title.lower()} in queue.[/]")
            continue
        table = Table(title=f"{title} ({len(entries)})")
        table.add_column("ID", style="cyan")
        table.add_column("Subject")
        table.add_column("Risk", justify="right")
        table.add_column("Priority", justify="right", style="green")
        table.add_column("State")
        table.add_column("Assigned")
        table.add_column("Reasons")
        for entry in entries[:limit]:
            item = entry.item
            style = RISK_STYLES[entry.risk_level.value]
            table.add_row(
                item.id,
                item.subject.key,
                f"[{style}]{entry.risk:.1f} {entry.risk_level.value}[/]",
                str(entry.priority),
                item.workflow_state.value,
                item.assigned_to or "-",
                ", ".join(item.reasons)[:40],
            )
        console.print(table)


# ── Workflow ─────────────────────────────────────────────────────────


@main.command()
@reviewer_option
@click.argument("item_type", type=click.Choice(["flag", "report"]))
@click.argument("item_id")
@click.argument("new_state", type=click.Choice(["pending", "in_review", "resolved", "actioned"]))
@click.option("--expected-version", type=int, default=None)
@click.pass_obj
def state(settings: Settings, reviewer_id: str, item_type: str, item_id: str,
          new_state: str, expected_version: Optional[int]):
    """Move an item to a new workflow state."""
    try:
        item = _engine(settings).set_state(
            _session(settings, reviewer_id), item_type, item_id, new_state, expected_version
        )
    except ModerationError as exc:
        _fail(exc)
    console.print(f"  [green]v[/] {item.key} is now {item.workflow_state.value} (version {item.version})")


@main.command()
@reviewer_option
@click.argument("item_type", type=click.Choice(["flag", "report"]))
@click.argument("item_id")
@click.argument("assignee", required=False)
@click.pass_obj
def assign(settings: Settings, reviewer_id: str, item_type: str, item_id: str, assignee: Optional[str]):
    """Assign an item (omit ASSIGNEE to unassign)."""
    try:
        item = _engine(settings).assign(_session(settings, reviewer_id), item_type, item_id, assignee)
    except ModerationError as exc:
        _fail(exc)
    console.print(f"  [green]v[/] {item.key} assigned to {item.assigned_to or 'nobody'}")


@main.command()
@reviewer_option
@click.option("--status", required=True, type=click.Choice(["live", "hidden", "removed"]))
@click.option("--clip", "clip_ids", multiple=True, help="Clip id (repeatable)")
@click.option("--flag", "flag_ids", multiple=True, help="Flag id (repeatable)")
@click.option("--report", "report_ids", multiple=True, help="Report id (repeatable)")
@click.pass_obj
def bulk(settings: Settings, reviewer_id: str, status: str, clip_ids: tuple,
         flag_ids: tuple, report_ids: tuple):
    """Apply one clip status to every selected clip, flag and report."""
    try:
        result = _engine(settings).bulk_update_clips(
            _session(settings, reviewer_id), clip_ids, status, flag_ids=flag_ids, report_ids=report_ids
        )
    except ModerationError as exc:
        _fail(exc)
    console.print(f"  [green]v[/] {result.updated_count} clip(s) set to {status}")
    console.print(f"    {result.transitioned_count} item(s) transitioned")
    if result.profile_report_ids:
        console.print(
            f"  [yellow]![/] Profile reports need a profile action: {', '.join(result.profile_report_ids)}"
        )


@main.command()
@reviewer_option
@click.argument("action", type=click.Choice(["ban", "warn", "dismiss"]))
@click.argument("report_ids", nargs=-1, required=True)
@click.option("--reason", default=None)
@click.pass_obj
def profile(settings: Settings, reviewer_id: str, action: str, report_ids: tuple, reason: Optional[str]):
    """Ban, warn or dismiss the profiles behind REPORT_IDS."""
    try:
        result = _engine(settings).moderate_profile(
            _session(settings, reviewer_id), report_ids, action, reason
        )
    except ModerationError as exc:
        _fail(exc)
    console.print(f"  [green]v[/] {action}: {', '.join(result.profile_ids)}")


@main.command()
@reviewer_option
@click.argument("item_type", type=click.Choice(["flag", "report"]))
@click.argument("item_id")
@click.pass_obj
def history(settings: Settings, reviewer_id: str, item_type: str, item_id: str):
    """Show the audited workflow history of an item."""
    try:
        entries = _engine(settings).item_history(_session(settings, reviewer_id), item_type, item_id)
    except ModerationError as exc:
        _fail(exc)
    if not entries:
        console.print("[yellow]No history recorded.[/]")
        return
    table = Table(title=f"History of {item_type} {item_id}")
    table.add_column("When", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Actor")
    table.add_column("Change")
    for e in entries:
        table.add_row(e.timestamp, e.action, e.actor, f"{e.previous_value or '-'} -> {e.new_value or '-'}")
    console.print(table)


@main.command(name="export-history")
@reviewer_option
@click.option("--format", "fmt", default="json", type=click.Choice(["json", "csv"]))
@click.option("--item-type", default=None, type=click.Choice(["flag", "report"]))
@click.option("--actor", default=None, help="Only actions by this reviewer")
@click.option("--action", default=None, help="Only this action (e.g. state_change)")
@click.option("--since", "start_date", default=None, help="ISO timestamp lower bound")
@click.option("--until", "end_date", default=None, help="ISO timestamp upper bound")
@click.option("--output", "-o", default=None, type=click.Path(dir_okay=False), help="Write to file instead of stdout")
@click.pass_obj
def export_history(settings: Settings, reviewer_id: str, fmt: str, item_type: Optional[str],
                   actor: Optional[str], action: Optional[str], start_date: Optional[str],
                   end_date: Optional[str], output: Optional[str]):
    """Export the moderation history as JSON or CSV (admin only)."""
    try:
        text = _engine(settings).export_history(
            _session(settings, reviewer_id),
            fmt,
            item_type=item_type,
            actor=actor,
            action=action,
            start_date=start_date,
            end_date=end_date,
        )
    except ModerationError as exc:
        _fail(exc)
    if output:
        Path(output).write_text(text)
        console.print(f"  [green]v[/] History written to {output}")
    else:
        click.echo(text)


# ── Notifications ────────────────────────────────────────────────────


@main.command()
@reviewer_option
@click.option("--limit", default=50, show_default=True)
@click.option("--mark-read", is_flag=True, help="Mark the listed notifications read")
@click.pass_obj
def notifications(settings: Settings, reviewer_id: str, limit: int, mark_read: bool):
    """Show your unread notifications."""
    engine = _engine(settings)
    session = _session(settings, reviewer_id)
    try:
        pending = engine.unread_notifications(session, limit)
        if mark_read and pending:
            engine.mark_notifications_read(session, [n.id for n in pending])
    except ModerationError as exc:
        _fail(exc)

    if not pending:
        console.print("[green]No unread notifications.[/]")
        return
    table = Table(title=f"Notifications ({len(pending)})")
    table.add_column("When", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Item")
    table.add_column("Severity")
    table.add_column("Priority", justify="right", style="green")
    for n in pending:
        style = RISK_STYLES[n.severity.value]
        table.add_row(
            n.created_at, n.type.value, n.item_key, f"[{style}]{n.severity.value}[/]", str(n.priority)
        )
    console.print(table)
    if mark_read:
        console.print(f"  [dim]{len(pending)} marked read.[/]")


# ── Stats ────────────────────────────────────────────────────────────


@main.command()
@reviewer_option
@click.option("--period", "period_days", type=int, default=None, help="Days to look back")
@click.pass_obj
def stats(settings: Settings, reviewer_id: str, period_days: Optional[int]):
    """Show moderation statistics."""
    try:
        result = _engine(settings).statistics(_session(settings, reviewer_id), period_days)
    except ModerationError as exc:
        _fail(exc)

    avg = "-" if result.avg_minutes_to_review is None else f"{result.avg_minutes_to_review:.1f} min"
    lines = [
        f"Reviewed today:          {result.reviewed_today}",
        f"Reviewed ({result.period_days}d):          {result.reviewed_in_period}",
        f"Avg time to review:      {avg}",
        f"High-risk pending:       {result.high_risk_pending}",
        f"Backlog over threshold:  {result.backlog_older_than_threshold}",
        "",
        "By source:    " + ", ".join(f"{k}={v}" for k, v in sorted(result.by_source.items())),
        "By state:     " + ", ".join(f"{k}={v}" for k, v in result.by_workflow_state.items()),
        "Reports on:   " + ", ".join(f"{k}={v}" for k, v in result.reports_by_subject_kind.items()),
    ]
    console.print(Panel("\n".join(lines), title="Moderation Statistics"))


# ── Jobs ─────────────────────────────────────────────────────────────


@main.group()
def job():
    """Trigger and inspect maintenance jobs."""


@job.command(name="run")
@reviewer_option
@click.argument("name", type=click.Choice(["escalate_backlog", "scan_subjects"]))
@click.pass_obj
def run_job(settings: Settings, reviewer_id: str, name: str):
    """Run a job now (admin only)."""
    try:
        run = _engine(settings).run_job(_session(settings, reviewer_id), name)
    except ModerationError as exc:
        _fail(exc)
    if run.status == "succeeded":
        console.print(f"  [green]v[/] {name} finished")
        for key, value in run.summary.items():
            console.print(f"    {key}: {value}")
    else:
        console.print(f"  [red]x[/] {name} failed: {run.error}")
        raise SystemExit(1)


# ── Reviewers ────────────────────────────────────────────────────────


@main.group()
def reviewer():
    """Manage reviewers and their device credentials."""


@reviewer.command(name="add")
@admin_option
@click.argument("new_reviewer_id")
@click.argument("handle")
@click.option("--role", default="reviewer", type=click.Choice(["admin", "reviewer", "viewer"]))
@click.pass_obj
def add_reviewer(settings: Settings, reviewer_id: Optional[str], new_reviewer_id: str, handle: str, role: str):
    """Add or replace a reviewer (admin only once any reviewer exists)."""
    _require_admin(settings, reviewer_id)
    _reviewers(settings).add_reviewer(Reviewer(id=new_reviewer_id, handle=handle, role=Role(role)))
    console.print(f"  [green]v[/] {new_reviewer_id} ({role})")


@reviewer.command(name="list")
@click.pass_obj
def list_reviewers(settings: Settings):
    """List reviewers."""
    reviewers = _reviewers(settings).list_reviewers()
    if not reviewers:
        console.print("[yellow]No reviewers.[/]")
        return
    table = Table(title=f"Reviewers ({len(reviewers)})")
    table.add_column("ID", style="cyan")
    table.add_column("Handle")
    table.add_column("Role")
    for r in reviewers:
        table.add_row(r.id, r.handle, r.role.value)
    console.print(table)


@reviewer.command(name="device")
@admin_option
@click.argument("owner_id")
@click.pass_obj
def register_device(settings: Settings, reviewer_id: Optional[str], owner_id: str):
    """Issue a device credential for the X-Device-Id header (admin only)."""
    _require_admin(settings, reviewer_id)
    store = _reviewers(settings)
    if store.get_reviewer(owner_id) is None:
        raise click.ClickException(f"Unknown reviewer '{owner_id}'")
    raw = store.register_device(owner_id)
    console.print(f"  Device credential for {owner_id}: [bold]{raw}[/]")
    console.print("  [dim]Shown once; store it now.[/]")


@reviewer.command(name="role")
@admin_option
@click.argument("target_id")
@click.argument("role", type=click.Choice(["admin", "reviewer", "viewer"]))
@click.pass_obj
def change_role(settings: Settings, reviewer_id: Optional[str], target_id: str, role: str):
    """Change a reviewer's role (admin only)."""
    _require_admin(settings, reviewer_id)
    updated = _reviewers(settings).update_role(target_id, Role(role))
    if updated is None:
        raise click.ClickException(f"Unknown reviewer '{target_id}'")
    console.print(f"  [green]v[/] {updated.id} is now {updated.role.value}")


@reviewer.command(name="revoke")
@admin_option
@click.argument("credential")
@click.pass_obj
def revoke_device(settings: Settings, reviewer_id: Optional[str], credential: str):
    """Revoke a device credential (admin only)."""
    _require_admin(settings, reviewer_id)
    if not _reviewers(settings).revoke_device(credential):
        raise click.ClickException("No such device credential")
    console.print("  [green]v[/] Device credential revoked")


if __name__ == "__main__":
    main()
