"""Vigil jobs command - Manage and trigger scheduled jobs."""

import json
from typing import Any, Dict, List, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from vigil_cli.cli.error_handler import ValidationError, handle_errors
from vigil_cli.cli.exit_codes import ExitCode
from vigil_cli.cli.output import (
    format_duration,
    format_status,
    format_timestamp,
    print_json,
    print_key_value,
    print_result,
)

app = typer.Typer(help="Manage scheduled jobs.")
console = Console()


def _json_mode() -> bool:
    from vigil_cli.main import is_json

    return is_json()


def _database() -> Any:
    from vigil_cli.database.connection import get_database

    return get_database()


def _catalog() -> Any:
    from vigil_cli.scheduler.catalog import JobCatalog

    return JobCatalog(_database())


def _runner() -> Any:
    from vigil_cli.config import get_config
    from vigil_cli.daemon.service import build_runner

    return build_runner(get_config(), _database())


def _parse_config(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"--config is not valid JSON: {e}")
    if not isinstance(value, dict):
        raise ValidationError("--config must be a JSON object")
    return value


def _parse_statuses(status: Optional[str]) -> Optional[Tuple[Any, ...]]:
    from vigil_cli.scheduler.job import JobStatus

    if not status or status.lower() == "all":
        return None
    try:
        return tuple(JobStatus(s.strip().upper()) for s in status.split(","))
    except ValueError:
        valid = ", ".join(s.value.lower() for s in JobStatus)
        raise ValidationError(f"Invalid status '{status}'. Choose from: {valid}, all")


def _outcome_exit_code(status: Any) -> int:
    from vigil_cli.scheduler.job import OutcomeStatus

    if status is OutcomeStatus.SUCCESS:
        return ExitCode.SUCCESS
    if status is OutcomeStatus.FAILED:
        return ExitCode.HANDLER_ERROR
    return ExitCode.JOB_CONTENTION


@app.command("list")
@handle_errors
def list_jobs(
    status: Optional[str] = typer.Option(
        None,
        "--status",
        "-s",
        help="Filter by status (active, running, failed, paused, all). Comma-separate several.",
    ),
    organization: Optional[str] = typer.Option(
        None,
        "--org",
        help="Only jobs owned by this organization.",
    ),
) -> None:
    """List scheduled jobs.

    Example:
        vigil jobs list
        vigil jobs list --status failed,paused
    """
    jobs = _catalog().list_jobs(organization_id=organization, statuses=_parse_statuses(status))

    if _json_mode():
        print_json([_job_to_dict(j) for j in jobs])
        return

    if not jobs:
        console.print("[dim]No jobs found.[/dim]")
        return

    table = Table(title="Scheduled Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type", style="magenta")
    table.add_column("Schedule", style="green")
    table.add_column("Status", style="bold")
    table.add_column("Errors", justify="right")
    table.add_column("Last Run")
    table.add_column("Next Run")

    for job in jobs:
        table.add_row(
            job.id[:8],
            job.name,
            job.job_type,
            job.schedule,
            format_status(job.status.value),
            str(job.error_count) if job.error_count else "",
            format_timestamp(job.last_run_at),
            format_timestamp(job.next_run_at, empty="N/A"),
        )

    console.print(table)


def _job_to_dict(job: Any) -> Dict[str, Any]:
    return {
        "id": job.id,
        "name": job.name,
        "job_type": job.job_type,
        "schedule": job.schedule,
        "organization_id": job.organization_id,
        "config": job.config,
        "status": job.status.value,
        "last_run_at": job.last_run_at,
        "next_run_at": job.next_run_at,
        "last_result": job.last_result,
        "error_count": job.error_count,
        "run_count": job.run_count,
    }


@app.command("show")
@handle_errors
def show_job(
    job_id: str = typer.Argument(..., help="Job ID or unique ID prefix."),
) -> None:
    """Show one job in detail.

    Example:
        vigil jobs show 3f2a
    """
    catalog = _catalog()
    job = catalog.resolve_id(job_id)

    if _json_mode():
        print_json(_job_to_dict(job))
        return

    print_key_value(
        {
            "ID": job.id,
            "Name": job.name,
            "Type": job.job_type,
            "Schedule": job.schedule,
            "Organization": job.organization_id,
            "Status": job.status.value,
            "Runs": job.run_count,
            "Consecutive errors": job.error_count,
            "Last run": job.last_run_at,
            "Next run": job.next_run_at,
            "Config": job.config or None,
        },
        title=f"Job {job.name}",
    )

    last = job.last_execution
    if last is not None:
        console.print()
        print_result(
            last.success,
            last.message or ("Succeeded" if last.success else "Failed"),
            {"Duration": format_duration(last.duration) or None, **last.detail},
        )


@app.command("create")
@handle_errors
def create_job(
    job_type: str = typer.Option(
        ...,
        "--type",
        "-t",
        help="Registered job type (see 'vigil jobs types').",
    ),
    schedule: Optional[str] = typer.Option(
        None,
        "--schedule",
        "-s",
        help="Cron ('0 9 * * 1') or interval ('every 5m') schedule. Defaults to scheduler.default_schedule.",
    ),
    name: Optional[str] = typer.Option(
        None,
        "--name",
        "-n",
        help="Optional job name.",
    ),
    config_json: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Handler settings as a JSON object.",
    ),
    organization: Optional[str] = typer.Option(
        None,
        "--org",
        help="Owning organization ID.",
    ),
) -> None:
    """Create a new scheduled job.

    Example:
        vigil jobs create --type history_cleanup --schedule "0 3 * * *"
        vigil jobs create --type history_cleanup --schedule "every 12h" --config '{"max_age_days": 7}'
    """
    from vigil_cli.config import get_config
    from vigil_cli.scheduler.catalog import JobCatalog

    config = get_config()
    runner = _runner()
    catalog = JobCatalog(runner.database, registry=runner.registry)

    job = catalog.create_job(
        job_type=job_type,
        schedule=schedule or config.scheduler.default_schedule,
        name=name or "",
        config=_parse_config(config_json),
        organization_id=organization,
    )

    if _json_mode():
        print_json(_job_to_dict(job))
        return

    print_result(
        True,
        f"Job created: {job.id}",
        {"Type": job.job_type, "Schedule": job.schedule, "Next run": job.next_run_at},
    )


@app.command("types")
@handle_errors
def list_types() -> None:
    """List registered job types.

    Example:
        vigil jobs types
    """
    registry = _runner().registry

    if _json_mode():
        print_json({t: registry.resolve(t).description for t in registry.job_types})
        return

    table = Table(title="Job Types")
    table.add_column("Type", style="magenta")
    table.add_column("Description")
    for job_type in registry.job_types:
        table.add_row(job_type, registry.resolve(job_type).description)
    console.print(table)


@app.command("delete")
@handle_errors
def delete_job(
    job_id: str = typer.Argument(..., help="Job ID or unique ID prefix."),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip confirmation prompt.",
    ),
) -> None:
    """Delete a scheduled job. Its history is kept.

    Example:
        vigil jobs delete 3f2a --force
    """
    catalog = _catalog()
    job = catalog.resolve_id(job_id)

    if not force:
        confirm = typer.confirm(f"Delete job '{job.name}' ({job.id})?")
        if not confirm:
            raise typer.Abort()

    catalog.delete(job.id)
    print_result(True, f"Job deleted: {job.id}")


@app.command("run")
@handle_errors
def run_job(
    job_id: str = typer.Argument(..., help="Job ID or unique ID prefix."),
) -> None:
    """Run a job now, outside its schedule.

    Exits with 4 if the job is already running and 3 if it fails.

    Example:
        vigil jobs run 3f2a
    """
    import asyncio

    job = _catalog().resolve_id(job_id)
    runner = _runner()

    if not _json_mode():
        console.print(f"[bold]Running job:[/bold] {job.name} ({job.id[:8]})")

    outcome = asyncio.run(runner.trigger_job(job.id))

    if _json_mode():
        print_json(outcome.to_dict())
    elif outcome.ran:
        details: Dict[str, Any] = {"Duration": format_duration(outcome.result.duration) or None}
        details.update(outcome.result.detail)
        print_result(outcome.result.success, outcome.message or outcome.status.value, details)
    else:
        console.print(f"[yellow]Not run ({outcome.status.value}):[/yellow] {outcome.message}")

    code = _outcome_exit_code(outcome.status)
    if code != ExitCode.SUCCESS:
        raise typer.Exit(code=code)


@app.command("tick")
@handle_errors
def tick() -> None:
    """Run every due job once, then exit.

    Suitable for driving Vigil from system cron instead of 'vigil run'.

    Example:
        vigil jobs tick
    """
    import asyncio

    outcomes = asyncio.run(_runner().run_due_jobs())

    if _json_mode():
        print_json([o.to_dict() for o in outcomes])
        return

    if not outcomes:
        console.print("[dim]No jobs due.[/dim]")
        return

    table = Table(title="Tick Results")
    table.add_column("Job ID", style="cyan")
    table.add_column("Outcome", style="bold")
    table.add_column("Message")
    for outcome in outcomes:
        table.add_row(outcome.job_id[:8], format_status(outcome.status.value), outcome.message)
    console.print(table)


@app.command("pause")
@handle_errors
def pause_job(
    job_id: str = typer.Argument(..., help="Job ID or unique ID prefix."),
) -> None:
    """Exclude a job from automatic scheduling.

    A paused job can still be run with 'vigil jobs run'.

    Example:
        vigil jobs pause 3f2a
    """
    catalog = _catalog()
    job = catalog.pause(catalog.resolve_id(job_id).id)
    print_result(True, f"Job paused: {job.id}")


@app.command("resume")
@handle_errors
def resume_job(
    job_id: str = typer.Argument(..., help="Job ID or unique ID prefix."),
) -> None:
    """Return a paused job to automatic scheduling.

    Example:
        vigil jobs resume 3f2a
    """
    catalog = _catalog()
    job = catalog.resume(catalog.resolve_id(job_id).id)
    print_result(True, f"Job resumed: {job.id}", {"Next run": job.next_run_at})


@app.command("set-schedule")
@handle_errors
def set_schedule(
    job_id: str = typer.Argument(..., help="Job ID or unique ID prefix."),
    schedule: str = typer.Argument(..., help="New cron or interval schedule."),
) -> None:
    """Change a job's schedule.

    Example:
        vigil jobs set-schedule 3f2a "every 30m"
    """
    catalog = _catalog()
    job = catalog.update_schedule(catalog.resolve_id(job_id).id, schedule)
    print_result(True, "Schedule updated", {"Schedule": job.schedule, "Next run": job.next_run_at})


@app.command("history")
@handle_errors
def job_history(
    job_id: Optional[str] = typer.Argument(
        None,
        help="Job ID or prefix to show history for (or all if not specified).",
    ),
    limit: int = typer.Option(
        10,
        "--limit",
        "-l",
        help="Number of history entries to show.",
        min=1,
    ),
) -> None:
    """Show job execution history.

    Example:
        vigil jobs history
        vigil jobs history 3f2a --limit 20
    """
    catalog = _catalog()
    # History outlives deleted jobs, so fall back to the raw ID
    target: Optional[str] = None
    if job_id:
        matches = catalog.find_by_prefix(job_id)
        target = matches[0].id if len(matches) == 1 else job_id

    records: List[Dict[str, Any]] = catalog.history(job_id=target, limit=limit)

    if _json_mode():
        print_json(records)
        return

    table = Table(title=f"Job History{f' for {job_id}' if job_id else ''}")
    table.add_column("Job ID", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Trigger")
    table.add_column("Completed", style="green")
    table.add_column("Duration")
    table.add_column("Status", style="bold")
    table.add_column("Message")

    for record in records:
        if record["aborted"]:
            status = "[red]aborted[/red]"
        else:
            status = format_status("success" if record["success"] else "failed")
        table.add_row(
            record["job_id"][:8],
            record["job_type"],
            record["trigger"],
            record["completed_at"] or "",
            format_duration(record["duration"]),
            status,
            record["message"] or "",
        )

    console.print(table)


@app.command("locks")
@handle_errors
def list_locks() -> None:
    """List active execution locks.

    Example:
        vigil jobs locks
    """
    locks = _runner().lock_manager.list_active_locks()

    if _json_mode():
        print_json([lock.to_dict() for lock in locks])
        return

    if not locks:
        console.print("[dim]No active locks.[/dim]")
        return

    table = Table(title="Execution Locks")
    table.add_column("Job ID", style="cyan")
    table.add_column("Holder")
    table.add_column("Acquired")
    table.add_column("Expires")
    for lock in locks:
        table.add_row(
            lock.job_id[:8],
            lock.holder,
            format_timestamp(lock.acquired_at),
            format_timestamp(lock.expires_at),
        )
    console.print(table)


@app.command("unlock")
@handle_errors
def unlock_job(
    job_id: str = typer.Argument(..., help="Job ID or unique ID prefix."),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip confirmation prompt.",
    ),
) -> None:
    """Forcibly remove a job's execution lock.

    Only for recovering from a crashed runner. A job still marked RUNNING
    is reset by the next tick once its lock is gone.

    Example:
        vigil jobs unlock 3f2a --force
    """
    job = _catalog().resolve_id(job_id)

    if not force:
        confirm = typer.confirm(f"Remove the execution lock on '{job.name}' ({job.id})?")
        if not confirm:
            raise typer.Abort()

    if _runner().lock_manager.force_release(job.id):
        print_result(True, f"Lock removed: {job.id}")
    else:
        console.print(f"[yellow]No lock held for job {job.id}[/yellow]")
