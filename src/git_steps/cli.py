"""
Command-line interface for authoring step-structured tutorial repositories.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple
from datetime import datetime

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .rebase_orchestrator import RebaseOrchestrator
from .cli_prompt import CliPrompt
from .models import RebaseError, RewriteAbortFailure, RewriteStatus
from . import __version__ as PACKAGE_VERSION


console = Console()
logger = logging.getLogger(__name__)


def _print_version(ctx, param, value):
    """Eager option callback to print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"git-steps {PACKAGE_VERSION}")
    ctx.exit()


def _default_log_path() -> Path:
    """Log file from GIT_STEPS_LOG, else ~/.git-steps/git-steps.log."""
    env_path = os.environ.get("GIT_STEPS_LOG")
    if env_path:
        p = Path(env_path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    base = Path.home() / ".git-steps"
    base.mkdir(parents=True, exist_ok=True)
    return base / "git-steps.log"


class SafeConsoleFormatter(logging.Formatter):
    """Formatter replacing characters the console encoding cannot represent.

    Only console output is sanitized; file handlers keep full UTF-8.
    """

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, style: str = "%", encoding: Optional[str] = None):
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self.encoding = encoding or getattr(sys.stderr, "encoding", None) or "utf-8"

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        try:
            msg.encode(self.encoding, errors="strict")
            return msg
        except UnicodeEncodeError:
            return msg.encode(self.encoding, errors="replace").decode(self.encoding, errors="replace")


class SafeConsoleFilter(logging.Filter):
    """Sanitize record messages before RichHandler renders them."""

    def __init__(self, encoding: Optional[str] = None):
        super().__init__()
        self.encoding = encoding or getattr(sys.stderr, "encoding", None) or "utf-8"

    def filter(self, record: logging.LogRecord) -> bool:  # always keep the record
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        try:
            message.encode(self.encoding, errors="strict")
        except UnicodeEncodeError:
            record.msg = message.encode(self.encoding, errors="replace").decode(self.encoding, errors="replace")
            record.args = ()
        return True


def setup_logging(verbose: bool = False, console_level: Optional[str] = None, log_file: Optional[Path] = None) -> Path:
    """Setup logging with a per-run file and a rotated aggregate:
    - Per-run log file: <stem>-YYYYMMDD_HHMMSS.log
    - Aggregate log: <stem>.log (rotated)
    - Best-effort hardlink: <stem>-current.log -> per-run file
    - Console logging only with --verbose or --log-level
    Returns the path worth showing to the user.
    """
    provided = Path(log_file) if log_file else _default_log_path()
    if provided.exists() and provided.is_dir():
        base_dir = provided
        base_stem = "git-steps"
        aggregate_path = base_dir / f"{base_stem}.log"
    else:
        base_dir = provided.parent
        base_stem = provided.stem or "git-steps"
        aggregate_path = provided
    base_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    per_run_path = base_dir / f"{base_stem}-{timestamp}.log"
    current_link_path = base_dir / f"{base_stem}-current.log"

    root = logging.getLogger()
    # Editor and task processes call this again within one rewrite
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    file_fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(process)d %(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    run_file_handler = logging.FileHandler(str(per_run_path), encoding="utf-8")
    run_file_handler.setLevel(logging.DEBUG)
    run_file_handler.setFormatter(file_fmt)
    root.addHandler(run_file_handler)

    aggregate_handler = RotatingFileHandler(
        str(aggregate_path), maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    aggregate_handler.setLevel(logging.DEBUG)
    aggregate_handler.setFormatter(file_fmt)
    root.addHandler(aggregate_handler)

    created_hardlink = False
    try:
        if current_link_path.exists():
            current_link_path.unlink()
        os.link(per_run_path, current_link_path)
        created_hardlink = True
    except OSError:
        # Unsupported across volumes and on some filesystems
        created_hardlink = False

    if verbose or console_level:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
        }
        ch_level = level_map.get((console_level or "info").lower(), logging.INFO)
        console_handler = RichHandler(console=console, rich_tracebacks=True)
        console_handler.setLevel(ch_level)
        stream = getattr(console, "file", sys.stderr)
        enc = getattr(stream, "encoding", None) or getattr(sys.stderr, "encoding", None) or "utf-8"
        console_handler.setFormatter(SafeConsoleFormatter("%(message)s", encoding=enc))
        console_handler.addFilter(SafeConsoleFilter(encoding=enc))
        root.addHandler(console_handler)

    return current_link_path if created_hardlink else aggregate_path


def _maybe_print_log_notice(verbose: bool, console_level: Optional[str], log_path: Path) -> None:
    """Tell the user where logs go when the console shows none."""
    if verbose or console_level:
        return
    console.print(f"[dim]Logs are written to {log_path}. Use -v or --log-level to see them here.[/dim]")


def _orchestrator(ctx: click.Context) -> RebaseOrchestrator:
    _maybe_print_log_notice(ctx.obj.get("verbose"), ctx.obj.get("console_level"), ctx.obj.get("log_path"))
    return RebaseOrchestrator(ctx.obj.get("repo_path"), CliPrompt(console))


def _report_status(orchestrator: RebaseOrchestrator, status: RewriteStatus) -> None:
    if status is RewriteStatus.COMPLETED:
        console.print("\n✅ **Rewrite completed**", style="bold green")
    elif status is RewriteStatus.CONFLICTED:
        console.print("\n⚠️  **Rewrite stopped on conflicts**", style="bold yellow")
        orchestrator.prompt.show_pause(orchestrator.pause_message())
    elif status is RewriteStatus.PAUSED:
        orchestrator.prompt.show_pause(orchestrator.pause_message())
    elif status is RewriteStatus.ABORTED:
        console.print("\n🔙 **Rewrite aborted; history restored**", style="bold green")
    else:
        console.print(f"Nothing to do ({status.value})")


def _run(ctx: click.Context, title: str, action: Callable) -> None:
    """Run a command body with the CLI's error reporting."""
    orchestrator = None
    try:
        orchestrator = _orchestrator(ctx)
        action(orchestrator)
    except RewriteAbortFailure as e:
        console.print(f"\n❌ **{title} Error:** {e}", style="bold red")
        console.print(f"HEAD: {e.head or 'unknown'}")
        if e.status:
            console.print(e.status)
        logger.debug(f"{title} failed", exc_info=True)
        sys.exit(1)
    except RebaseError as e:
        console.print(f"\n❌ **{title} Error:** {e}", style="bold red")
        logger.debug(f"{title} failed", exc_info=True)
        if orchestrator is not None and orchestrator.git_manager.is_rebase_in_progress():
            orchestrator.prompt.show_pause(orchestrator.pause_message())
        sys.exit(1)
    except (click.Abort, KeyboardInterrupt):
        console.print("\n\n🚫 **Operation cancelled by user**", style="bold yellow")
        logger.debug("Operation cancelled by user", exc_info=True)
        sys.exit(130)


@click.group()
@click.option(
    "--version",
    "-V",
    is_flag=True,
    callback=_print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose console logging (INFO)")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Console log level. By default, console logging is disabled.",
)
@click.option(
    "--repo-path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to repository (defaults to current directory)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, log_level: Optional[str], repo_path: Optional[Path]) -> None:
    """Git Steps - write tutorials as a history of numbered step commits."""
    log_path = setup_logging(verbose, console_level=log_level)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["console_level"] = log_level
    ctx.obj["log_path"] = log_path
    ctx.obj["repo_path"] = repo_path.resolve() if isinstance(repo_path, Path) else None
    logger.debug(f"CLI init: cwd={Path.cwd()} repo_path={ctx.obj['repo_path']}")


@cli.command()
@click.option("--message", "-m", default=None, help="Step message")
@click.option("--allow-empty", is_flag=True, help="Create the step even without staged changes")
@click.pass_context
def push(ctx: click.Context, message: Optional[str], allow_empty: bool) -> None:
    """Commit staged changes as the next sub-step."""
    def action(orchestrator):
        number = orchestrator.push(message, allow_empty=allow_empty)
        console.print(f"➕ Step {number} created", style="bold green")

    _run(ctx, "Push", action)


@cli.command()
@click.pass_context
def pop(ctx: click.Context) -> None:
    """Remove the most recent step."""
    def action(orchestrator):
        descriptor = orchestrator.pop()
        if descriptor is None:
            console.print("➖ Removed a commit that was not a step", style="yellow")
        else:
            console.print(f"➖ Step {descriptor.number} removed", style="bold green")

    _run(ctx, "Pop", action)


@cli.command()
@click.option("--message", "-m", default=None, help="Step message")
@click.pass_context
def tag(ctx: click.Context, message: Optional[str]) -> None:
    """Close the current super-step."""
    def action(orchestrator):
        number = orchestrator.tag(message)
        console.print(f"🏷️  Step {number} tagged", style="bold green")

    _run(ctx, "Tag", action)


@cli.command()
@click.argument("selectors", nargs=-1)
@click.option("--udiff", is_flag=True, help="Record a step map for dependent projects")
@click.option(
    "--udiff-path",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Project whose manuals reference this one; it is re-sorted when done",
)
@click.pass_context
def edit(ctx: click.Context, selectors: Tuple[str, ...], udiff: bool, udiff_path: Optional[str]) -> None:
    """Pause the history at each selected step.

    SELECTORS are step numbers, `root`, git refs or ranges such as 2..3.
    Without selectors the current step is edited.
    """
    def action(orchestrator):
        status = orchestrator.edit(selectors, udiff=udiff or bool(udiff_path), udiff_path=udiff_path)
        _report_status(orchestrator, status)

    _run(ctx, "Edit", action)


@cli.command()
@click.argument("step", required=False)
@click.option("--root", "from_root", is_flag=True, help="Sort the whole history")
@click.pass_context
def sort(ctx: click.Context, step: Optional[str], from_root: bool) -> None:
    """Renumber steps by their position in history."""
    def action(orchestrator):
        status = orchestrator.sort("root" if from_root else step)
        _report_status(orchestrator, status)

    _run(ctx, "Sort", action)


@cli.command()
@click.argument("step", required=False)
@click.option("--root", "at_root", is_flag=True, help="Reword the root commit")
@click.option("--message", "-m", default=None, help="New step message")
@click.pass_context
def reword(ctx: click.Context, step: Optional[str], at_root: bool, message: Optional[str]) -> None:
    """Change the message of a step."""
    def action(orchestrator):
        status = orchestrator.reword("root" if at_root else step, message)
        _report_status(orchestrator, status)

    _run(ctx, "Reword", action)


@cli.command()
@click.argument("target", required=False)
@click.option("--interactive", "-i", is_flag=True, help="Choose among previous pauses")
@click.pass_context
def back(ctx: click.Context, target: Optional[str], interactive: bool) -> None:
    """Go back to a previous pause of the current rewrite.

    TARGET is a step number or xN for the Nth previous pause.
    """
    def action(orchestrator):
        snapshot = orchestrator.step_back(target, interactive=interactive)
        console.print(f"⏪ Back at step {snapshot.step}", style="bold green")
        orchestrator.prompt.show_pause(orchestrator.pause_message())

    _run(ctx, "Step Back", action)


@cli.command()
@click.pass_context
def abort(ctx: click.Context) -> None:
    """Abort the current rewrite and restore the original history."""
    def action(orchestrator):
        _report_status(orchestrator, orchestrator.abort())

    _run(ctx, "Abort", action)


@cli.command("continue")
@click.pass_context
def continue_(ctx: click.Context) -> None:
    """Continue the current rewrite."""
    def action(orchestrator):
        _report_status(orchestrator, orchestrator.continue_rewrite())

    _run(ctx, "Continue", action)


def _parse_overrides(items: Tuple[str, ...]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for item in items:
        name, sep, version = item.rpartition("=")
        if not sep or not name.strip() or not version.strip():
            raise click.BadParameter(f"Expected NAME=VERSION, got '{item}'")
        overrides[name.strip()] = version.strip()
    return overrides


def _render_callback(command: Optional[str], cwd: Path) -> Optional[Callable[[], None]]:
    if not command:
        return None

    def render() -> None:
        logger.info(f"Rendering manuals: {command}")
        try:
            subprocess.run(shlex.split(command), cwd=str(cwd), check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise RebaseError(f"Render command failed: {e}") from e

    return render


@cli.command("update-deps")
@click.argument("overrides", nargs=-1)
@click.option("--manifest", default="package.json", show_default=True, help="Manifest file to update")
@click.option("--render-command", default=None, help="Command re-rendering manuals at super-steps")
@click.pass_context
def update_deps(ctx: click.Context, overrides: Tuple[str, ...], manifest: str, render_command: Optional[str]) -> None:
    """Replay the steps touching the manifest with new dependency versions.

    OVERRIDES are NAME=VERSION pairs.
    """
    parsed = _parse_overrides(overrides)

    def action(orchestrator):
        callback = _render_callback(render_command, orchestrator.paths.root)
        status = orchestrator.update_dependencies(parsed, callback, manifest=manifest)
        _report_status(orchestrator, status)

    _run(ctx, "Update Dependencies", action)


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("step")
@click.argument("git_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def show(ctx: click.Context, step: str, git_args: Tuple[str, ...]) -> None:
    """Show the commit of STEP; extra arguments are passed to git show."""
    def action(orchestrator):
        click.echo(orchestrator.show(step, *git_args))

    _run(ctx, "Show", action)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the current step and rewrite state."""
    def action(orchestrator):
        info = orchestrator.get_status()
        console.print("\n📊 **Step Status**")
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Branch", info["branch"])
        table.add_row("Current step", info["current_step"])
        table.add_row("Current super-step", info["current_super_step"])
        table.add_row("Next step", info["next_step"])
        table.add_row("Rewrite", "🔄 In progress" if info["rebasing"] == "True" else "✅ None")
        table.add_row("Paused at", info["paused_at"])
        table.add_row("Previous pauses", info["previous_pauses"])
        table.add_row("Step map", info["step_map"])
        console.print(table)

    _run(ctx, "Status", action)


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n\n🚫 **Operation cancelled by user**", style="bold yellow")
        logger.debug("Top-level cancellation (KeyboardInterrupt)", exc_info=True)
        sys.exit(130)
    except Exception as e:
        console.print(f"\n💥 **Unexpected error:** {e}", style="bold red")
        logger.debug("Unexpected error in main()", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
