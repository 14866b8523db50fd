"""Command line interface for rotten."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich import print
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from rotten.analysis import Classification, SortPolicy, analyze
from rotten.git import BackendUnavailable, GitBackend

app = typer.Typer(help="Find remote branches that are rotting instead of reaching production")
console = Console()
err_console = Console(stderr=True)


def configure_logging(verbose: bool) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def get_backend(path: Path, timeout: Optional[float]) -> GitBackend:
    """Get git backend instance."""
    try:
        return GitBackend(path, timeout=timeout)
    except BackendUnavailable as err:
        print(f"Error: {escape(str(err))}")
        raise typer.Exit(code=1) from err


def run_analysis(
    path: Path,
    prod: str,
    sort: SortPolicy,
    workers: Optional[int],
    timeout: Optional[float],
) -> Classification:
    """Analyze the repository, exiting with code 1 if it cannot be read."""
    backend = get_backend(path, timeout)
    progress = Progress(
        SpinnerColumn(),
        TextColumn("Checking branches against {task.fields[prod]}"),
        TextColumn("{task.completed} done"),
        console=err_console,
        transient=True,
        disable=not err_console.is_terminal,
    )
    with progress:
        task = progress.add_task("check", total=None, prod=prod)
        try:
            return analyze(
                backend,
                prod,
                sort_policy=sort,
                max_workers=workers,
                on_settled=lambda _branch: progress.advance(task),
            )
        except BackendUnavailable as err:
            print(f"[red]Error:[/red] {escape(str(err))}")
            raise typer.Exit(code=1) from err


def score_line(classification: Classification) -> str:
    """Summary in the form ``#rotten:<pending>/harvested:<harvestable>``."""
    return f"#rotten:{len(classification.pending)}/harvested:{len(classification.harvestable)}"


def delete_commands(classification: Classification) -> list[str]:
    """Shell commands removing every harvestable branch, remotely and locally."""
    return [
        f"git push {record.remote} :{record.short_name}; git branch -D {record.short_name};"
        for record in reversed(classification.harvestable)
    ]


def create_table(title: str, style: str = "bold blue") -> Table:
    """Create a table with the standard look."""
    return Table(
        title=title,
        show_header=True,
        header_style="bold",
        title_style=style,
        show_edge=True,
    )


def render_harvestable(classification: Classification) -> None:
    prod = escape(classification.production)
    if not classification.harvestable:
        console.print(
            Panel(
                f"[green]Congrats, repo is clean of branches already merged into[/green] [magenta]{prod}[/magenta]",
                style="green",
                padding=(0, 2),
                expand=False,
            )
        )
        return

    table = create_table(f"Branches in {prod} that can be deleted")
    table.add_column("Branch", style="green", no_wrap=True)
    # Most recently queried last, so long-standing merge candidates lead
    for record in reversed(classification.harvestable):
        table.add_row(escape(record.branch))
    console.print(table)

    console.print()
    console.print("[red]Paste the following to delete them all[/red]")
    for command in delete_commands(classification):
        console.print(command, markup=False, highlight=False, soft_wrap=True)
    console.print()


def render_pending(classification: Classification) -> None:
    prod = escape(classification.production)
    if not classification.pending:
        console.print(
            Panel(
                f"[green]Congrats, repo has no remote branches waiting to get into[/green] [magenta]{prod}[/magenta]",
                style="green",
                padding=(0, 2),
                expand=False,
            )
        )
        return

    table = create_table(f"Branches waiting to get into {prod} (or plain rotten)", style="bold red")
    table.add_column("Commits", justify="right")
    table.add_column("Branch", style="red", no_wrap=True)
    table.add_column("Updated", style="yellow")
    table.add_column("Committer", style="green")
    table.add_column("Committed", style="yellow")
    for record in classification.pending:
        latest = record.newest
        table.add_row(
            str(len(record.commits)),
            escape(record.branch),
            latest.author_relative_age,
            escape(latest.committer_email),
            latest.committer_relative_age,
        )
    console.print(table)


def render_failed(classification: Classification) -> None:
    if not classification.failed:
        return
    table = create_table("Branches that could not be checked", style="bold yellow")
    table.add_column("Branch", style="cyan", no_wrap=True)
    table.add_column("Error", style="yellow")
    for failure in classification.failed:
        table.add_row(escape(failure.branch), escape(str(failure.cause)))
    console.print(table)


def render(classification: Classification) -> None:
    """Print the full report."""
    if not classification.production_found:
        console.print(
            Panel(
                f"[yellow]Branch [red]{escape(classification.production)}[/red] does not exist on any remote, "
                "so no branch can be harvestable. Did you pass the right --prod?[/yellow]",
                title="Production branch not found",
                title_align="left",
                padding=(0, 2),
                expand=False,
            )
        )

    render_harvestable(classification)
    render_pending(classification)
    render_failed(classification)

    console.print()
    console.print("Explanation: rotten = # branches you need to merge into prod")
    console.print("harvested: branches already in prod that need to be deleted.")
    console.print(f"    Your rotten score is [green]{score_line(classification)}[/green]", highlight=False)


@app.command()
def report(
    path: Annotated[Path, typer.Option("--repo", "-r", envvar="ROTTEN_REPO", help="Path to git repository")] = Path("."),
    prod: str = typer.Option("master", "--prod", "-p", envvar="ROTTEN_PROD", help="The branch you have running in production"),
    sort: SortPolicy = typer.Option(
        SortPolicy.OLDEST_ACTIVITY_FIRST, "--sort", "-s", envvar="ROTTEN_SORT", help="Order of pending branches"
    ),
    most_commits: bool = typer.Option(False, "--most-commits", "-c", help="Shorthand for --sort most-commits"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, envvar="ROTTEN_WORKERS", help="Limit concurrent git queries (default: up to 32)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", envvar="ROTTEN_TIMEOUT", help="Seconds before a git call is killed"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Report harvestable, pending and failed remote branches."""
    configure_logging(verbose)
    if most_commits:
        sort = SortPolicy.MOST_COMMITS_FIRST

    console.print(f"Running against [green]{escape(str(path.resolve()))}[/green]", highlight=False)
    console.print(f"Checking that branches are in production branch [green]{escape(prod)}[/green]", highlight=False)
    classification = run_analysis(path, prod, sort, workers, timeout)
    console.print()
    render(classification)


@app.command()
def score(
    path: Annotated[Path, typer.Option("--repo", "-r", envvar="ROTTEN_REPO", help="Path to git repository")] = Path("."),
    prod: str = typer.Option("master", "--prod", "-p", envvar="ROTTEN_PROD", help="The branch you have running in production"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, envvar="ROTTEN_WORKERS", help="Limit concurrent git queries (default: up to 32)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", envvar="ROTTEN_TIMEOUT", help="Seconds before a git call is killed"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Print only the rotten score."""
    configure_logging(verbose)
    classification = run_analysis(path, prod, SortPolicy.OLDEST_ACTIVITY_FIRST, workers, timeout)
    console.print(score_line(classification), markup=False, highlight=False)


if __name__ == "__main__":
    app()
