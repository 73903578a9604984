"""Download command implementation."""

import re
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn

from orly.client import OreillyClient
from orly.core.epub_builder import BuildConfig, EpubBuilder
from orly.errors import ArchiveWriteFailure, AuthenticationFailed, OrlyError
from orly.models import Book

MAX_FILENAME_LENGTH = 120


def get_epub_filename(book: Book) -> str:
    """Build a file system friendly name: "<title> (<identifier>).epub"."""
    clean_title = re.sub(r"[^\w\s\-.,()']", "", book.title).strip()
    clean_title = re.sub(r"\s+", " ", clean_title)[:MAX_FILENAME_LENGTH].rstrip(" .")
    return f"{clean_title or 'book'} ({book.identifier}).epub"


def authenticate(
    client: OreillyClient,
    cookie: str | None,
    email: str | None,
    password: str | None,
) -> None:
    """Authenticate with a cookie when given, otherwise with credentials."""
    if cookie:
        client.cookie_auth(cookie)
    elif email and password:
        client.credentials_auth(email, password)
    else:
        raise AuthenticationFailed("Provide either --cookie or both --email and --password")


def write_epub(builder: EpubBuilder, path: Path) -> int:
    """Finalize builder into path, removing the file if writing fails."""
    try:
        with path.open("wb") as sink:
            return builder.finalize(sink)
    except OSError as e:
        path.unlink(missing_ok=True)
        raise ArchiveWriteFailure(str(path), str(e)) from e
    except OrlyError:
        path.unlink(missing_ok=True)
        raise


def download_book(
    client: OreillyClient,
    book_id: str,
    output_dir: Path,
    config: BuildConfig,
    console: Console,
    quiet: bool = False,
) -> Path:
    """Fetch one book and package it into output_dir. Returns the EPUB path."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        disable=quiet,
    ) as progress:
        task = progress.add_task(f"Fetching book {book_id}...", total=None)
        book = client.fetch_book_details(book_id)

        progress.update(task, description=f"Fetching chapters: {book.title[:40]}...")
        chapters = client.fetch_chapters(book_id)
        toc = client.fetch_toc(book_id)

        progress.update(task, description=f"Processing {len(chapters)} chapters...")
        builder = EpubBuilder(book, config)
        builder.add_chapters(chapters).add_toc(toc)

        progress.update(task, description="Downloading images and stylesheets...")
        builder.add_resources(client.fetch_many)

        progress.update(task, description="Writing EPUB...")
        path = output_dir / get_epub_filename(book)
        size = write_epub(builder, path)

    if not quiet:
        console.print(
            Panel(
                "\n".join(
                    [
                        f"[bold]{book.title}[/]",
                        f"[dim]Author(s):[/] {book.author_names or 'Unknown'}",
                        f"[dim]Chapters:[/] {len(chapters)}",
                        f"[dim]Size:[/] {size / 1024:,.0f} KiB",
                        f"[dim]File:[/] {path}",
                    ]
                ),
                title="Complete",
                border_style="green",
            )
        )
    return path


def execute_download(
    book_ids: list[str],
    output_dir: Path,
    kindle: bool,
    threads: int,
    cookie: str | None,
    email: str | None,
    password: str | None,
    quiet: bool,
    console: Console,
) -> list[Path]:
    """Execute the download command."""
    output_dir.mkdir(parents=True, exist_ok=True)
    config = BuildConfig(kindle=kindle)

    paths = []
    with OreillyClient(concurrency=threads) as client:
        authenticate(client, cookie, email, password)
        for book_id in book_ids:
            paths.append(download_book(client, book_id, output_dir, config, console, quiet))
    return paths
