import asyncio
import logging
import sys

import click
import halo
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from click.shell_completion import CompletionItem

from mcpanel.config import DEFAULT_STATE_DIR, Settings
from mcpanel.control.dns import create_dns
from mcpanel.control.orchestrator import Orchestrator
from mcpanel.errors import PanelError
from mcpanel.providers.factory import create_provider
from mcpanel.providers.scenarios import SCENARIOS
from mcpanel.providers.simulated import FAULT_OPERATIONS, SimulatedProvider
from mcpanel.providers.simulated_state import FaultConfig, SimulatedStateStore

console = Console()

STATE_STYLES = {
    "running": "green",
    "pending": "yellow",
    "stopping": "yellow",
    "stopped": "red",
    "hibernating": "blue",
    "terminated": "red",
    "unknown": "dim",
}


class StepProgress:
    """Operation progress, one line per orchestrator step.

    With ``spinner`` each step gets a halo spinner that is ticked off when the
    next step begins; otherwise messages are printed as-is (non-TTY, --debug).
    """

    def __init__(self, spinner=True):
        self.spinner = spinner
        self._current = None

    def update(self, message):
        if not self.spinner:
            print(message)
            return
        if self._current:
            self._current.succeed()
        self._current = halo.Halo(text=message, spinner="bouncingBar", stream=sys.stderr)
        self._current.start()

    def finish(self):
        if self._current:
            self._current.succeed()
            self._current = None

    def fail(self, message=None):
        if self._current:
            self._current.fail(message)
            self._current = None
        elif not self.spinner:
            print(message or "Failed")


def _use_spinner(ctx) -> bool:
    debug = ctx.obj.get("debug", False) if ctx.obj else False
    return not debug and sys.stderr.isatty()


def _complete_operation(ctx, param, incomplete):
    return [CompletionItem(op) for op in FAULT_OPERATIONS if op.startswith(incomplete)]


def _mock_state_path(settings: Settings):
    return settings.mock_state_path or DEFAULT_STATE_DIR / "mock-state.json"


def _complete_backup(ctx, param, incomplete):
    # Only the saved simulated state is consulted; listing real backups needs a remote command.
    state = SimulatedStateStore(_mock_state_path(Settings())).load()
    if state is None:
        return []
    return [
        CompletionItem(b.name, help=f"{b.size} - {b.date}")
        for b in state.backups
        if b.name.startswith(incomplete)
    ]


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )
    # botocore is very chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.INFO if debug else logging.WARNING)


def _settings(ctx) -> Settings:
    if "settings" not in ctx.obj:
        overrides = {"backend_mode": "mock"} if ctx.obj.get("mock") else {}
        settings = Settings(**overrides)
        if settings.is_mock:
            settings.mock_state_path = _mock_state_path(settings)
        ctx.obj["settings"] = settings
    return ctx.obj["settings"]


def _provider(ctx):
    if "provider" not in ctx.obj:
        ctx.obj["provider"] = create_provider(_settings(ctx))
    return ctx.obj["provider"]


def _make_orchestrator(ctx, on_status=None) -> Orchestrator:
    settings = _settings(ctx)
    return Orchestrator(
        _provider(ctx), dns=create_dns(settings), settings=settings, on_status=on_status,
    )


def _error_text(e: Exception) -> str:
    return e.message if isinstance(e, PanelError) else str(e)


def _print_error(message: str) -> None:
    console.print(f"[bold red]Error:[/] {message}")


def _run(coro):
    """Run a coroutine, turning errors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/]")
        raise SystemExit(130)
    except Exception as e:
        _print_error(_error_text(e))
        raise SystemExit(1)


def _run_operation(ctx, operation):
    """Run an orchestrator operation with step progress. ``operation`` receives the orchestrator."""
    progress = StepProgress(spinner=_use_spinner(ctx))
    orchestrator = _make_orchestrator(ctx, on_status=progress.update)
    try:
        result = asyncio.run(operation(orchestrator))
        progress.finish()
    except KeyboardInterrupt:
        progress.fail("Interrupted")
        console.print("\n[yellow]Interrupted.[/]")
        raise SystemExit(130)
    except Exception as e:
        message = _error_text(e)
        progress.fail(message)
        _print_error(message)
        raise SystemExit(1)
    return result


def _print_result(title: str, lines: list[str], warnings: list[str] | None = None) -> None:
    console.print(Panel("\n".join(lines), title=f"[green]{title}[/]", border_style="green"))
    for warning in warnings or []:
        console.print(f"[yellow]Warning:[/] {warning}")


class HelpfulCommand(click.Command):
    """On a usage error, print the command's help followed by the error (exit 2)."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            click.echo(ctx.get_help() + "\n")
            _print_error(e.format_message())
            ctx.exit(2)


class HelpfulGroup(click.Group):
    """Group whose subcommands (and nested groups) report usage errors with help."""

    command_class = HelpfulCommand
    group_class = type


@click.group(cls=HelpfulGroup)
@click.version_option(version="0.1.0", prog_name="mcpanel")
@click.option("--debug", is_flag=True, help="Show debug logging")
@click.option("--mock", is_flag=True, help="Use the simulated backend")
@click.pass_context
def cli(ctx, debug, mock):
    """Minecraft control panel - operate a single cloud-hosted Minecraft server."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["mock"] = mock or ctx.obj.get("mock", False)
    _configure_logging(debug)


@cli.command()
@click.argument("shell", type=click.Choice(["bash", "zsh", "fish"]))
def completion(shell):
    """Generate shell completion script."""
    from click.shell_completion import get_completion_class
    comp_cls = get_completion_class(shell)
    comp = comp_cls(cli, {}, "mcpanel", "_MCPANEL_COMPLETE")
    click.echo(comp.source())


@cli.command()
@click.pass_context
def status(ctx):
    """Show the server state."""
    orchestrator = _make_orchestrator(ctx)
    info = _run(orchestrator.status())
    style = STATE_STYLES.get(info.state.value, "white")
    lines = [
        f"[bold]Instance:[/]   {info.instance_id}",
        f"[bold]State:[/]      [{style}]{info.state.value}[/]",
        f"[bold]IP:[/]         {info.public_address or '-'}",
        f"[bold]Volume:[/]     {'attached' if info.has_volume else 'none'}",
    ]
    if info.server_action:
        lines.append(f"[bold]Action:[/]     {info.server_action.action} (in progress)")
    console.print(Panel("\n".join(lines), title="Minecraft Server"))


@cli.command()
@click.pass_context
def start(ctx):
    """Start the server and point DNS at it."""
    result = _run_operation(ctx, lambda o: o.start())
    lines = [
        f"[bold]Instance:[/]   {result.instance_id}",
        f"[bold]IP:[/]         {result.public_address}",
    ]
    if result.domain:
        lines.append(f"[bold]Domain:[/]     {result.domain}")
    _print_result("Server Started", lines, result.warnings)


@cli.command()
@click.pass_context
def stop(ctx):
    """Stop the server instance (keeps its volume)."""
    result = _run_operation(ctx, lambda o: o.stop())
    console.print(f"[green]{result.message}[/]")


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def hibernate(ctx, yes):
    """Back up, stop the server and delete its volume."""
    if not yes:
        click.confirm("Hibernate the server? Its volume will be deleted after the backup.", abort=True)
    result = _run_operation(ctx, lambda o: o.hibernate())
    console.print(f"[green]{result.message}[/]")


@cli.command()
@click.option("--backup", "backup_name", default=None, shell_complete=_complete_backup,
              help="Restore this backup after resuming")
@click.pass_context
def resume(ctx, backup_name):
    """Resume a hibernated or stopped server."""
    result = _run_operation(ctx, lambda o: o.resume(backup_name=backup_name))
    lines = [
        f"[bold]Instance:[/]   {result.instance_id}",
        f"[bold]IP:[/]         {result.public_address}",
    ]
    if result.domain:
        lines.append(f"[bold]Domain:[/]     {result.domain}")
    if result.restored_from:
        lines.append(f"[bold]Restored:[/]   {result.restored_from}")
    _print_result("Server Resumed", lines, result.warnings)


@cli.command()
@click.argument("name", required=False, default=None)
@click.pass_context
def backup(ctx, name):
    """Back up the world to Google Drive."""
    result = _run_operation(ctx, lambda o: o.backup(name=name))
    console.print(f"[green]{result.message}[/]")
    if result.output:
        console.print(f"[dim]{result.output.strip()}[/]")


@cli.command()
@click.argument("name", required=False, default=None, shell_complete=_complete_backup)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def restore(ctx, name, yes):
    """Restore a backup (latest if NAME is omitted)."""
    if not yes:
        click.confirm(f"Restore {name or 'the latest backup'}? The current world is replaced.", abort=True)
    result = _run_operation(ctx, lambda o: o.restore(name=name))
    console.print(f"[green]{result.message}[/] ({result.backup_name})")


@cli.command()
@click.pass_context
def backups(ctx):
    """List available backups."""
    items = _run(_provider(ctx).list_backups())
    if not items:
        console.print("No backups found.")
        return
    table = Table(title="Backups")
    table.add_column("Name", style="cyan")
    table.add_column("Size", style="magenta")
    table.add_column("Date", style="green")
    for b in items:
        table.add_row(b.name, b.size, b.date)
    console.print(table)


@cli.command()
@click.option("--period", default="current-month",
              type=click.Choice(["current-month", "last-month", "last-30-days"]),
              help="Billing period")
@click.pass_context
def costs(ctx, period):
    """Show AWS costs by service."""
    summary = _run(_provider(ctx).get_costs(period))
    table = Table(title=f"Costs {summary.period_start} to {summary.period_end}")
    table.add_column("Service", style="cyan")
    table.add_column(f"Cost ({summary.currency})", style="yellow", justify="right")
    for line in summary.breakdown:
        table.add_row(line.service, line.cost)
    table.add_row("[bold]Total[/]", f"[bold]{summary.total_cost}[/]")
    console.print(table)


@cli.command()
@click.pass_context
def players(ctx):
    """Show the current player count."""
    count = _run(_provider(ctx).get_player_count())
    console.print(f"[bold]Players online:[/] {count.count} [dim](updated {count.last_updated})[/]")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Port")
@click.pass_context
def serve(ctx, host, port):
    """Run the HTTP API."""
    import uvicorn

    from mcpanel.api import create_app

    app = create_app(settings=_settings(ctx), provider=_provider(ctx))
    uvicorn.run(app, host=host, port=port, log_level="debug" if ctx.obj["debug"] else "info")


# ── Simulated backend controls ──


@cli.group()
@click.pass_context
def mock(ctx):
    """Control the simulated backend."""
    ctx.obj["mock"] = True


def _mock_provider(ctx) -> SimulatedProvider:
    provider = _provider(ctx)
    if not isinstance(provider, SimulatedProvider):
        console.print("[red]Mock commands need the simulated backend (--mock or MC_BACKEND_MODE=mock).[/]")
        raise SystemExit(1)
    return provider


@mock.command("reset")
@click.pass_context
def mock_reset(ctx):
    """Reset the simulated state to its defaults."""
    _run(_mock_provider(ctx).reset())
    console.print("[green]Mock state reset.[/]")


@mock.command("scenarios")
def mock_scenarios():
    """List available scenarios."""
    table = Table(title="Scenarios")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    for s in SCENARIOS.values():
        table.add_row(s.name, s.description)
    console.print(table)


@mock.command("scenario")
@click.argument("name", type=click.Choice(list(SCENARIOS)))
@click.pass_context
def mock_scenario(ctx, name):
    """Apply a named scenario."""
    _run(_mock_provider(ctx).apply_scenario(name))
    console.print(f"[green]Applied scenario:[/] {name}")


@mock.command("fault")
@click.argument("operation", shell_complete=_complete_operation)
@click.option("--always", is_flag=True, help="Fail every call instead of only the next one")
@click.option("--code", default=None, help="Error code to raise")
@click.option("--message", default=None, help="Error message to raise")
@click.pass_context
def mock_fault(ctx, operation, always, code, message):
    """Inject a failure into OPERATION (e.g. startInstance)."""
    fault = FaultConfig(fail_next=not always, always_fail=always)
    if code:
        fault.error_code = code
    if message:
        fault.error_message = message
    _run(_mock_provider(ctx).set_fault(operation, fault))
    mode = "every call" if always else "next call"
    console.print(f"[yellow]{operation}[/] will fail on {mode} with {fault.error_code}")


@mock.command("clear-fault")
@click.argument("operation", required=False, default=None, shell_complete=_complete_operation)
@click.option("--all", "clear_all", is_flag=True, help="Clear every injected fault")
@click.pass_context
def mock_clear_fault(ctx, operation, clear_all):
    """Remove an injected failure."""
    if not operation and not clear_all:
        console.print("[red]Provide an OPERATION or --all.[/]")
        raise SystemExit(1)
    _run(_mock_provider(ctx).clear_fault(None if clear_all else operation))
    console.print("[green]Faults cleared.[/]" if clear_all else f"[green]Cleared fault on {operation}.[/]")


@mock.command("latency")
@click.argument("ms", type=int)
@click.pass_context
def mock_latency(ctx, ms):
    """Add MS milliseconds of latency to every simulated call."""
    _run(_mock_provider(ctx).set_latency(ms))
    console.print(f"[green]Latency set to {ms} ms.[/]")


@mock.command("state")
@click.pass_context
def mock_state(ctx):
    """Print the full simulated state."""
    state = _run(_mock_provider(ctx).snapshot())
    console.print_json(data=state)


def main():
    cli()


if __name__ == "__main__":
    main()
