"""Command line interface for branchkeeper."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from branchkeeper.config import Config, load_config
from branchkeeper.errors import GitError
from branchkeeper.git import GitRepo
from branchkeeper.logging_config import setup_logging
from branchkeeper.models import OperationReport, Outcome, Plan
from branchkeeper.operations import BranchOperations, ConfirmCallback

app = typer.Typer(help="Git branch lifecycle tool: clean, merge and fetch branches in bulk")
console = Console()

PathOption = Annotated[Path, typer.Option(help="Path to git repository")]
ConfigOption = Annotated[Optional[Path], typer.Option("--config", help="Config file to use instead of .branchkeeperrc*")]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Show progress messages")]
DebugOption = Annotated[bool, typer.Option("--debug", help="Show debug logs and per-branch errors")]


def get_repo(path: Path, logger: logging.Logger) -> GitRepo:
    """Get git repository instance."""
    try:
        return GitRepo(path, logger=logger)
    except GitError as err:
        console.print(f"[red]Error:[/red] {err}")
        raise typer.Exit(code=1) from err


def prepare(path: Path, config_file: Optional[Path], verbose: bool, debug: bool) -> tuple[GitRepo, Config, logging.Logger]:
    """Set up logging, open the repository and load its config file."""
    logger = setup_logging(verbose=verbose, debug=debug)
    repo = get_repo(path, logger)
    directory = Path(repo.repo.working_tree_dir or path)
    config = load_config(config_file, directory=directory, logger=logger)
    return repo, config, logger


def plan_table(title: str, plan: Plan) -> Table:
    """Create a table listing the branches of a plan."""
    table = Table(
        title=title,
        show_header=True,
        header_style="bold",
        title_style="bold blue",
        show_edge=True,
    )
    table.add_column("Branch", style="cyan", no_wrap=True)
    table.add_column("Action", style="magenta", justify="center")
    for item in plan:
        action = item.action.value
        if item.source:
            action = f"{action} ({item.source})"
        if item.force:
            action = f"{action} [red]forced[/red]"
        table.add_row(item.branch, action)
    return table


def confirm_with(prompt: str, title: str) -> ConfirmCallback:
    """Build a confirmation callback that shows the plan and asks ``prompt``."""

    def confirm(plan: Plan) -> bool:
        console.print()
        console.print(plan_table(title, plan))
        console.print()
        return Confirm.ask(prompt, default=False, console=console)

    return confirm


def report_result(report: OperationReport, show_errors: bool, silent: bool = False) -> None:
    """Print the outcome of a command and exit with its exit code."""
    if report.outcome is Outcome.ABORTED:
        console.print(f"[red]Error:[/red] {report.message}")
    elif report.outcome is Outcome.CANCELLED:
        console.print("\n[yellow]Operation cancelled[/yellow]")
    elif report.outcome is Outcome.NOTHING_TO_DO:
        if not silent:
            console.print(
                Panel(
                    f"[green]{report.message or 'Nothing to do'}[/green]",
                    style="green",
                    padding=(0, 2),
                    expand=False,
                )
            )
    else:
        if report.message and not silent:
            console.print(report.message)
        if report.result.total or not report.message:
            console.print(
                f"{report.command} finished: [green]{report.result.succeeded} succeeded[/green], "
                f"[red]{report.result.failed} failed[/red]"
            )
        if show_errors and report.result.errors:
            errors = Table(title="Errors", show_header=True, header_style="bold", title_style="bold red")
            errors.add_column("Branch", style="cyan", no_wrap=True)
            errors.add_column("Message")
            for error in report.result.errors:
                errors.add_row(error.branch, error.message)
            console.print(errors)
    raise typer.Exit(code=report.exit_code)


@app.command()
def clean(
    path: PathOption = Path("."),
    remote: Annotated[Optional[list[str]], typer.Option("--remote", "-r", help="Only check these remotes")] = None,
    ignore: Annotated[Optional[list[str]], typer.Option("--ignore", "-i", help="Branches to leave alone")] = None,
    confirm: Annotated[Optional[bool], typer.Option("--confirm/--no-confirm", help="Ask before deleting")] = None,
    list_only: Annotated[Optional[bool], typer.Option("--list-only", help="Only list the branches to delete")] = None,
    force: Annotated[
        Optional[bool], typer.Option("--force", "-f", help="Delete unmerged branches without asking")
    ] = None,
    silent: Annotated[Optional[bool], typer.Option("--silent", help="Run without prompts or listings")] = None,
    skip_unreachable: Annotated[
        Optional[bool], typer.Option("--skip-unreachable", help="Keep branches whose remote cannot be listed")
    ] = None,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
) -> None:
    """Delete local branches whose remote branch no longer exists."""
    repo, config, logger = prepare(path, config_file, verbose, debug)
    config = config.merged(
        remotes=remote,
        ignore=ignore,
        confirm=confirm,
        list_only=list_only,
        force=force,
        silent=silent,
        skip_unreachable_remotes=skip_unreachable,
    )

    operations = BranchOperations(
        repo,
        config,
        confirm=confirm_with("Proceed with deletion?", "Branches to Delete"),
        logger=logger,
    )
    report = operations.clean_branches()

    if report.outcome is Outcome.DONE and config.list_only:
        console.print(plan_table("Branches to Delete", report.plan))
    report_result(report, show_errors=debug or verbose, silent=config.silent)


@app.command()
def merge(
    source: Annotated[str, typer.Option("--source", "-s", help="Branch to merge from")],
    target: Annotated[Optional[list[str]], typer.Option("--target", "-t", help="Branches to merge into")] = None,
    exclude: Annotated[Optional[list[str]], typer.Option("--exclude", "-e", help="Branches to leave out")] = None,
    ff_only: Annotated[
        Optional[bool], typer.Option("--ff-only/--no-ff", help="Only fast-forward, or always create a merge commit")
    ] = None,
    confirm: Annotated[bool, typer.Option("--confirm", help="Ask before merging")] = False,
    auto_stash: Annotated[Optional[bool], typer.Option("--auto-stash", help="Stash uncommitted changes")] = None,
    path: PathOption = Path("."),
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
) -> None:
    """Merge a source branch into one or more local branches."""
    repo, config, logger = prepare(path, config_file, verbose, debug)
    config = config.merged(merge_ignore=exclude, ff_only=ff_only, auto_stash=auto_stash, confirm=confirm)

    operations = BranchOperations(
        repo,
        config,
        confirm=confirm_with(f"Merge {source} into these branches?", "Branches to Merge Into"),
        logger=logger,
    )
    report_result(operations.merge_to_branches(source, target or []), show_errors=debug or verbose)


@app.command()
def fetch(
    remote: Annotated[Optional[str], typer.Option("--remote", help="Remote to create tracking branches from")] = None,
    ignore: Annotated[Optional[list[str]], typer.Option("--ignore", "-i", help="Branches to leave alone")] = None,
    force: Annotated[Optional[bool], typer.Option("--force", "-f", help="Recreate branches that already exist")] = None,
    confirm: Annotated[bool, typer.Option("--confirm", help="Ask before creating branches")] = False,
    auto_stash: Annotated[Optional[bool], typer.Option("--auto-stash", help="Stash uncommitted changes")] = None,
    path: PathOption = Path("."),
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
) -> None:
    """Create local tracking branches for every branch of a remote."""
    repo, config, logger = prepare(path, config_file, verbose, debug)
    config = config.merged(
        fetch_remote=remote, fetch_ignore=ignore, fetch_force=force, auto_stash=auto_stash, confirm=confirm
    )

    operations = BranchOperations(
        repo,
        config,
        confirm=confirm_with("Create these branches?", "Branches to Create"),
        logger=logger,
    )
    report_result(operations.fetch_all_branches(), show_errors=debug or verbose)


def choose_branches(branches: list[str], current: str, multi: bool) -> list[str]:
    """Let the user pick branches by number."""
    table = Table(show_header=True, header_style="bold", show_edge=True)
    table.add_column("#", justify="right")
    table.add_column("Branch", style="cyan", no_wrap=True)
    for number, branch in enumerate(branches, start=1):
        label = f"{branch} [turquoise2](current)[/turquoise2]" if branch == current else branch
        table.add_row(str(number), label)
    console.print(table)

    prompt = "Branch numbers, comma-separated" if multi else "Branch number"
    answer = Prompt.ask(prompt, console=console)
    chosen: list[str] = []
    for part in answer.split(","):
        part = part.strip()
        if not part.isdigit() or not 1 <= int(part) <= len(branches):
            console.print(f"[yellow]Ignoring invalid choice {part!r}[/yellow]")
            continue
        chosen.append(branches[int(part) - 1])
        if not multi:
            break
    return chosen


@app.command()
def delete(
    branches: Annotated[Optional[list[str]], typer.Argument(help="Branches to delete; prompts if omitted")] = None,
    force: Annotated[Optional[bool], typer.Option("--force", "-f", help="Delete unmerged branches")] = None,
    multi: Annotated[bool, typer.Option("--multi", "-m", help="Pick several branches")] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip the confirmation prompt")] = False,
    path: PathOption = Path("."),
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
) -> None:
    """Delete local branches picked by name or from a list."""
    repo, config, logger = prepare(path, config_file, verbose, debug)
    config = config.merged(force=force, confirm=not yes)

    selected = list(branches or [])
    if not selected:
        current = repo.current_branch().value
        candidates = [branch for branch in repo.local_branches().value if branch != current]
        if not candidates:
            console.print("[yellow]No local branches to delete[/yellow]")
            return
        try:
            selected = choose_branches(candidates, current, multi)
        except (KeyboardInterrupt, EOFError):
            console.print("\n[yellow]Operation cancelled[/yellow]")
            raise typer.Exit(code=1) from None
        if not selected:
            console.print("[yellow]No branch selected[/yellow]")
            raise typer.Exit(code=1)

    operations = BranchOperations(
        repo,
        config,
        confirm=confirm_with(f"Delete {len(selected)} branch(es)?", "Branches to Delete"),
        logger=logger,
    )
    report_result(operations.delete_branches(selected), show_errors=debug or verbose)


@app.command()
def switch(
    branch: Annotated[Optional[str], typer.Argument(help="Branch to check out; prompts if omitted")] = None,
    stash: Annotated[bool, typer.Option("--stash", help="Stash uncommitted changes before switching")] = False,
    path: PathOption = Path("."),
    verbose: VerboseOption = False,
    debug: DebugOption = False,
) -> None:
    """Check out another local branch."""
    logger = setup_logging(verbose=verbose, debug=debug)
    repo = get_repo(path, logger)
    current = repo.current_branch().value

    if branch is None:
        candidates = [name for name in repo.local_branches().value if name != current]
        if not candidates:
            console.print("[yellow]No other local branch to switch to[/yellow]")
            return
        try:
            chosen = choose_branches(candidates, current, multi=False)
            if chosen and repo.is_dirty().value and not stash:
                stash = Confirm.ask("Uncommitted changes found. Stash them and switch?", default=True, console=console)
        except (KeyboardInterrupt, EOFError):
            console.print("\n[yellow]Operation cancelled[/yellow]")
            raise typer.Exit(code=1) from None
        if not chosen:
            console.print("[yellow]No branch selected[/yellow]")
            raise typer.Exit(code=1)
        branch = chosen[0]

    report = BranchOperations(repo, logger=logger).switch_branch(branch, stash=stash)
    if report.outcome is Outcome.DONE and not report.result.failed:
        console.print(f"Switched to branch [cyan]{branch}[/cyan]")
        raise typer.Exit(code=0)
    if report.outcome is Outcome.DONE:
        console.print(f"[red]Error:[/red] {report.result.errors[0].message}")
        raise typer.Exit(code=1)
    report_result(report, show_errors=True)


if __name__ == "__main__":
    app()
