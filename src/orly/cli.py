"""Main CLI application."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from orly.client import DEFAULT_CONCURRENCY, OreillyClient
from orly.commands.download import authenticate, execute_download
from orly.core.toc_flattener import NavPoint, flatten_toc
from orly.errors import OrlyError

app = typer.Typer(
    name="orly",
    help="Download books from the O'Reilly learning platform as EPUB files.",
    add_completion=False,
)

console = Console()

CookieOption = Annotated[
    Optional[str],
    typer.Option("--cookie", envvar="ORLY_COOKIE", help="Cookie header of a logged in browser session"),
]
EmailOption = Annotated[
    Optional[str],
    typer.Option("--email", envvar="ORLY_EMAIL", help="Account email, used with --password"),
]
PasswordOption = Annotated[
    Optional[str],
    typer.Option("--password", envvar="ORLY_PASSWORD", help="Account password"),
]
VerboseOption = Annotated[
    bool, typer.Option("--verbose", "-v", help="Show debug logging")
]
QuietOption = Annotated[
    bool, typer.Option("--quiet", "-q", help="Only show warnings and errors")
]


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Route log records through rich."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose)],
        force=True,
    )
    logging.getLogger("cssutils").setLevel(logging.CRITICAL)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@app.command()
def download(
    book_ids: Annotated[
        list[str],
        typer.Argument(help="Book identifiers, the digits in the book URL"),
    ],
    output_dir: Annotated[
        Path,
        typer.Option(
            "--output-dir",
            "-o",
            help="Directory the EPUB files are written to",
            file_okay=False,
        ),
    ] = Path("."),
    kindle: Annotated[
        bool,
        typer.Option(
            "--kindle",
            help="Downscale images and avoid CSS that Kindle devices mishandle",
        ),
    ] = False,
    threads: Annotated[
        int,
        typer.Option(
            "--threads",
            "-t",
            min=1,
            help="Maximum number of concurrent downloads",
        ),
    ] = DEFAULT_CONCURRENCY,
    cookie: CookieOption = None,
    email: EmailOption = None,
    password: PasswordOption = None,
    verbose: VerboseOption = False,
    quiet: QuietOption = False,
) -> None:
    """Download one or more books and package each as an EPUB."""
    setup_logging(verbose, quiet)
    try:
        paths = execute_download(
            book_ids=book_ids,
            output_dir=output_dir,
            kindle=kindle,
            threads=threads,
            cookie=cookie,
            email=email,
            password=password,
            quiet=quiet,
            console=console,
        )
    except OrlyError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    if not quiet and len(paths) > 1:
        console.print(f"[green]Downloaded {len(paths)} books to {output_dir}[/]")


def add_toc_rows(table: Table, points: list[NavPoint], level: int = 0) -> None:
    for point in points:
        table.add_row(str(point.order), f"{'  ' * level}{point.label}", point.url)
        add_toc_rows(table, point.children, level + 1)


@app.command()
def info(
    book_id: Annotated[str, typer.Argument(help="Book identifier")],
    cookie: CookieOption = None,
    email: EmailOption = None,
    password: PasswordOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Display book metadata and table of contents."""
    setup_logging(verbose, quiet=not verbose)
    try:
        with OreillyClient() as client:
            authenticate(client, cookie, email, password)
            book = client.fetch_book_details(book_id)
            nav_map = flatten_toc(client.fetch_toc(book_id))
    except OrlyError as e:
        console.print(f"[red]Error reading book: {e}[/]")
        raise typer.Exit(1)

    info_lines = [
        f"[bold]{book.title}[/]",
        "",
        f"[dim]Author(s):[/] {book.author_names or 'Unknown'}",
        f"[dim]Publisher:[/] {book.publisher_names or 'Unknown'}",
        f"[dim]ISBN:[/] {book.isbn or 'Unknown'}",
        f"[dim]Issued:[/] {book.issued or 'Unknown'}",
        f"[dim]Language:[/] {book.language}",
        f"[dim]Pages:[/] {book.pagecount}",
    ]
    console.print()
    console.print(
        Panel("\n".join(info_lines), title="Book Information", border_style="green")
    )

    console.print()
    table = Table(title="Table of Contents", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Title", style="white")
    table.add_column("Location", style="dim")
    add_toc_rows(table, nav_map.points)
    console.print(table)
    console.print()


if __name__ == "__main__":
    app()
