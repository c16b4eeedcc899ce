"""TaskFlow command line.

Plans, daily tasks, a foreground pomodoro timer, day settings and statistics
over the local store. Every invocation first runs the daily materialization so
today's tasks exist before any command looks at them.
"""

import time
from datetime import date, datetime

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from taskflow.config.settings import settings
from taskflow.core.logger import setup_logger
from taskflow.db.errors import PersistenceError
from taskflow.db.session import init_db
from taskflow.materialization import materialize_today
from taskflow.plans import service as plans
from taskflow.plans.types import PlanPriority, PlanStatus
from taskflow.pomodoro import (
    EVENT_WORK_COMPLETED,
    InvalidStateError,
    Phase,
    PomodoroSessionController,
    SessionHandoff,
    SessionSnapshot,
    SqlPomodoroRepository,
)
from taskflow.preferences import StaticSettingsProvider, StoredSettingsProvider, get_day_settings, update_day_settings
from taskflow.preferences.service import validate_work_minutes
from taskflow.stats import DataKind, TimeRange, count_by_status
from taskflow.tasks import service as tasks
from taskflow.utils.calendar import format_mm_ss, today, utc_now

# Initialize Rich console for output
console = Console()

app = typer.Typer(name="taskflow", help="TaskFlow - plans, daily tasks and pomodoros", add_completion=False)
plan_app = typer.Typer(help="Manage plans", no_args_is_help=True)
task_app = typer.Typer(help="Manage daily tasks", no_args_is_help=True)
pomodoro_app = typer.Typer(help="Run pomodoro sessions", no_args_is_help=True)
settings_app = typer.Typer(help="Show or change day settings", no_args_is_help=True)
app.add_typer(plan_app, name="plan")
app.add_typer(task_app, name="task")
app.add_typer(pomodoro_app, name="pomodoro")
app.add_typer(settings_app, name="settings")

DATE_FORMATS = ["%Y-%m-%d"]


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}", style="bold red")
    raise typer.Exit(1)


def _to_date(value: datetime | None) -> date | None:
    return value.date() if value is not None else None


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at the configured level instead of warnings only"),
) -> None:
    """Set up logging and the store, then create today's tasks from active plans."""
    setup_logger(level=settings.log_level if verbose else "WARNING", log_file=settings.log_file)
    init_db()
    try:
        result = materialize_today()
    except PersistenceError as e:
        logger.warning(f"Daily materialization failed, will retry on next run: {e}")
        return
    if result.created_tasks:
        console.print(f"[green]Created {len(result.created_tasks)} task(s) for {result.day}[/green]")


# plans


@plan_app.command("add")
def plan_add(
    name: str = typer.Argument(..., help="Plan name"),
    start: datetime | None = typer.Option(None, "--start", formats=DATE_FORMATS, help="Start date (default: today)"),
    end: datetime | None = typer.Option(None, "--end", formats=DATE_FORMATS, help="Estimated end date"),
    high: bool = typer.Option(False, "--high", help="High priority"),
    urgent: bool = typer.Option(False, "--urgent", help="Urgent"),
    note: str | None = typer.Option(None, "--note", help="Free-form note"),
) -> None:
    """Create a plan."""
    try:
        plan = plans.create_plan(
            name,
            start_date=_to_date(start) or today(),
            estimated_end_date=_to_date(end),
            priority=PlanPriority.HIGH.value if high else PlanPriority.NORMAL.value,
            is_urgent=urgent,
            note=note,
        )
    except ValueError as e:
        _fail(str(e))
        return
    console.print(f"[green]Created plan[/green] {plan.name} ({plan.id}) - {PlanStatus(plan.status).display_name}")


@plan_app.command("list")
def plan_list(
    show_all: bool = typer.Option(False, "--all", help="Include finished and abandoned plans"),
) -> None:
    """List plans."""
    records = plans.list_plans(active=None if show_all else True)
    if not records:
        console.print("[dim]No plans[/dim]")
        return
    table = Table(title="Plans")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Window")
    table.add_column("Priority")
    for plan in records:
        window = f"{plan.start_date} - {plan.estimated_end_date or plan.start_date}"
        flags = PlanPriority(plan.priority or PlanPriority.NORMAL.value).display_name
        if plan.is_urgent:
            flags += ", urgent"
        table.add_row(plan.id, plan.name, PlanStatus(plan.status).display_name, window, flags)
    console.print(table)


def _plan_transition(action, plan_id: str) -> None:
    try:
        plan = action(plan_id)
    except ValueError as e:
        _fail(str(e))
        return
    console.print(f"Plan {plan.name}: [bold]{PlanStatus(plan.status).display_name}[/bold]")


@plan_app.command("finish")
def plan_finish(plan_id: str = typer.Argument(..., help="Plan ID")) -> None:
    """Mark a plan finished."""
    _plan_transition(plans.finish_plan, plan_id)


@plan_app.command("abandon")
def plan_abandon(plan_id: str = typer.Argument(..., help="Plan ID")) -> None:
    """Abandon an active plan."""
    _plan_transition(plans.abandon_plan, plan_id)


@plan_app.command("resume")
def plan_resume(plan_id: str = typer.Argument(..., help="Plan ID")) -> None:
    """Put a plan back in progress."""
    _plan_transition(plans.set_plan_in_progress, plan_id)


@plan_app.command("delay")
def plan_delay(plan_id: str = typer.Argument(..., help="Plan ID")) -> None:
    """Mark a plan delayed."""
    _plan_transition(plans.delay_plan, plan_id)


@plan_app.command("delete")
def plan_delete(
    plan_id: str = typer.Argument(..., help="Plan ID"),
    confirm: bool = typer.Option(False, "--confirm", help="Confirm deletion (required for safety)"),
) -> None:
    """Delete a plan; its tasks are kept without the plan link."""
    if not confirm:
        _fail("--confirm flag is required for safety")
    try:
        unlinked = plans.delete_plan(plan_id)
    except ValueError as e:
        _fail(str(e))
        return
    console.print(f"[green]Deleted plan[/green] ({unlinked} task(s) kept)")


# tasks


@task_app.command("add")
def task_add(
    name: str = typer.Argument(..., help="Task name"),
    day: datetime | None = typer.Option(None, "--date", formats=DATE_FORMATS, help="Day (default: today)"),
    high: bool = typer.Option(False, "--high", help="High priority"),
    urgent: bool = typer.Option(False, "--urgent", help="Urgent"),
    note: str | None = typer.Option(None, "--note", help="Free-form note"),
    plan_id: str | None = typer.Option(None, "--plan", help="Link to a plan"),
) -> None:
    """Create a task."""
    try:
        task = tasks.create_task(
            name,
            day=_to_date(day),
            priority=PlanPriority.HIGH.value if high else PlanPriority.NORMAL.value,
            is_urgent=urgent,
            note=note,
            plan_id=plan_id,
        )
    except ValueError as e:
        _fail(str(e))
        return
    console.print(f"[green]Created task[/green] {task.name} ({task.id}) for {task.date}")


@task_app.command("list")
def task_list(
    day: datetime | None = typer.Option(None, "--date", formats=DATE_FORMATS, help="Day (default: today)"),
) -> None:
    """List a day's tasks grouped by priority and urgency."""
    target = _to_date(day) or today()
    sections = [section for section in tasks.group_tasks(tasks.list_tasks_for_day(target)) if section.tasks]
    if not sections:
        console.print(f"[dim]No tasks for {target}[/dim]")
        return
    for section in sections:
        table = Table(title=section.title, title_justify="left")
        table.add_column("ID", style="dim")
        table.add_column("Name")
        table.add_column("Done")
        for task in section.tasks:
            table.add_row(task.id, task.name, "x" if task.is_finished else "")
        console.print(table)


@task_app.command("done")
def task_done(task_id: str = typer.Argument(..., help="Task ID")) -> None:
    """Toggle a task between finished and unfinished."""
    try:
        if tasks.is_task_locked(task_id) and not tasks.get_task(task_id).is_finished:
            _fail("Task belongs to an abandoned plan")
        task = tasks.toggle_task_finished(task_id)
    except ValueError as e:
        _fail(str(e))
        return
    state = "finished" if task.is_finished else "not finished"
    console.print(f"Task {task.name}: [bold]{state}[/bold]")


@task_app.command("delete")
def task_delete(
    task_id: str = typer.Argument(..., help="Task ID"),
    confirm: bool = typer.Option(False, "--confirm", help="Confirm deletion (required for safety)"),
) -> None:
    """Delete a task; its pomodoros are kept."""
    if not confirm:
        _fail("--confirm flag is required for safety")
    try:
        tasks.delete_task(task_id)
    except ValueError as e:
        _fail(str(e))
        return
    console.print("[green]Deleted task[/green]")


# pomodoro


def _render(snapshot: SessionSnapshot) -> str:
    label = "Relax" if snapshot.phase == Phase.RELAXING else "Focus"
    return f"{label} {snapshot.remaining_display}"


def _run_session(controller: PomodoroSessionController, relax: bool) -> None:
    """Tick the controller in the foreground until the session and optional relax end."""
    interval = settings.tick_interval_seconds
    last_shown = ""

    def on_event(event: str, snapshot: SessionSnapshot) -> None:
        if event == EVENT_WORK_COMPLETED:
            console.print("\a[bold green]Pomodoro complete[/bold green]")

    unsubscribe = controller.subscribe(on_event)
    try:
        last = time.monotonic()
        while True:
            time.sleep(interval)
            current = time.monotonic()
            controller.tick(current - last)
            last = current

            snapshot = controller.current_state()
            if snapshot.phase == Phase.COMPLETED:
                if relax:
                    controller.begin_relax()
                else:
                    controller.skip_relax()
                    return
            elif snapshot.phase == Phase.IDLE:
                return
            elif snapshot.phase in (Phase.WORKING, Phase.RELAXING):
                shown = _render(snapshot)
                if shown != last_shown:
                    console.print(shown, end="\r")
                    last_shown = shown
    except KeyboardInterrupt:
        console.print()
        snapshot = controller.current_state()
        if snapshot.phase in (Phase.WORKING, Phase.PAUSED, Phase.RELAXING):
            controller.abandon()
            console.print("[yellow]Session abandoned[/yellow]")
    finally:
        unsubscribe()


def _finish_pending(controller: PomodoroSessionController) -> None:
    if controller.phase != Phase.FINALIZING:
        return
    try:
        controller.retry_finalize()
    except PersistenceError as e:
        _fail(f"Could not save the finished pomodoro: {e}")


@pomodoro_app.command("run")
def pomodoro_run(
    task_id: str | None = typer.Option(None, "--task", help="Task to work on"),
    minutes: int | None = typer.Option(None, "--minutes", help="Work minutes (default: day settings)"),
    relax: bool = typer.Option(True, "--relax/--no-relax", help="Take the relax break after work"),
) -> None:
    """Run one pomodoro in the foreground; Ctrl-C abandons it."""
    provider = StoredSettingsProvider()
    try:
        if minutes is not None:
            validate_work_minutes(minutes)
            provider = StaticSettingsProvider(minutes, provider.session_durations().relax_minutes)
        if task_id is not None and tasks.get_task(task_id) is None:
            raise ValueError("Task not found.")
    except ValueError as e:
        _fail(str(e))
        return

    controller = PomodoroSessionController(repository=SqlPomodoroRepository(), settings_provider=provider)
    try:
        snapshot = controller.start(task_id=task_id)
    except InvalidStateError as e:
        _fail(f"{e}. Use 'pomodoro resume' to continue it.")
        return
    except PersistenceError as e:
        _fail(f"Could not start the pomodoro: {e}")
        return

    console.print(Panel(Text(f"Focus for {format_mm_ss(snapshot.remaining_seconds)}", style="bold"), border_style="green"))
    try:
        _run_session(controller, relax)
    except PersistenceError as e:
        logger.error(f"Pomodoro write failed: {e}")
    _finish_pending(controller)


@pomodoro_app.command("resume")
def pomodoro_resume(
    relax: bool = typer.Option(True, "--relax/--no-relax", help="Take the relax break after work"),
) -> None:
    """Continue a pomodoro left open by an interrupted run."""
    repository = SqlPomodoroRepository()
    record = repository.find_open()
    if record is None:
        _fail("No open pomodoro to resume")
        return
    handoff = SessionHandoff.from_open_record(record, utc_now(), running=True)
    controller = PomodoroSessionController(
        repository=repository, settings_provider=StoredSettingsProvider(), handoff=handoff
    )
    console.print(f"Resuming pomodoro with {controller.current_state().remaining_display} left")
    try:
        _run_session(controller, relax)
    except PersistenceError as e:
        logger.error(f"Pomodoro write failed: {e}")
    _finish_pending(controller)


# settings


def _parse_clock(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        datetime.strptime(value, "%H:%M")
    except ValueError as e:
        raise typer.BadParameter("Expected HH:MM") from e
    return value


@settings_app.command("show")
def settings_show() -> None:
    """Show the day settings."""
    record = get_day_settings()
    table = Table(title="Day settings", show_header=False)
    table.add_row("Work minutes", str(record.work_minutes))
    table.add_row("Relax minutes", str(record.relax_minutes))
    table.add_row("Notification", "on" if record.notification_enabled else "off")
    table.add_row("Notify at", record.notification_time.strftime("%H:%M"))
    console.print(table)


@settings_app.command("set")
def settings_set(
    work: int | None = typer.Option(None, "--work", help=f"Work minutes ({settings.work_minutes_min}-{settings.work_minutes_max})"),
    relax: int | None = typer.Option(
        None, "--relax", help=f"Relax minutes ({settings.relax_minutes_min}-{settings.relax_minutes_max})"
    ),
    notify: bool | None = typer.Option(None, "--notify/--no-notify", help="Daily review notification"),
    notify_at: str | None = typer.Option(None, "--notify-at", callback=_parse_clock, help="Notification time HH:MM"),
) -> None:
    """Change the day settings."""
    try:
        record = update_day_settings(
            work_minutes=work,
            relax_minutes=relax,
            notification_enabled=notify,
            notification_time=datetime.strptime(notify_at, "%H:%M").time() if notify_at else None,
        )
    except ValueError as e:
        _fail(str(e))
        return
    console.print(
        f"[green]Saved[/green] work={record.work_minutes}m relax={record.relax_minutes}m "
        f"notify={'on' if record.notification_enabled else 'off'} at {record.notification_time.strftime('%H:%M')}"
    )


# stats


@app.command()
def stats(
    kind: DataKind = typer.Argument(DataKind.POMODORO, help="What to count"),
    time_range: TimeRange = typer.Option(TimeRange.TODAY, "--range", help="Time range"),
) -> None:
    """Show counts per status."""
    items = count_by_status(kind, time_range)
    if not items:
        console.print(f"[dim]No {kind.value} records ({time_range.value})[/dim]")
        return
    table = Table(title=f"{kind.value.title()} - {time_range.value}")
    table.add_column("Status")
    table.add_column("Count", justify="right")
    for item in items:
        table.add_row(item.label, str(item.count))
    console.print(table)


if __name__ == "__main__":
    app()
