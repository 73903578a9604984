"""Ordering of chapter metadata and fetched chapters."""

from collections.abc import Iterable

from orly.errors import FetchFailure
from orly.models.book import Chapter, ChapterMeta, ChaptersPage


def page_count(total: int, per_page: int) -> int:
    """Number of listing pages needed for total chapters."""
    if total == 0:
        return 0
    if per_page <= 0:
        raise ValueError("per_page must be positive when chapters exist")
    return (total + per_page - 1) // per_page


def merge_chapter_pages(
    pages: Iterable[ChaptersPage], expected_count: int, source: str = "chapter listing"
) -> list[ChapterMeta]:
    """Concatenate listing pages in request order and renumber positions 0..N-1.

    Raises:
        FetchFailure: If the merged list does not match the advertised count.
    """
    chapters = [meta for page in pages for meta in page.results]
    if len(chapters) != expected_count:
        raise FetchFailure(
            source, f"expected {expected_count} chapters, received {len(chapters)}"
        )
    for position, meta in enumerate(chapters):
        meta.position = position
    return chapters


def order_chapters(chapters: Iterable[Chapter]) -> list[Chapter]:
    """Sort chapters fetched in completion order back into reading order."""
    return sorted(chapters, key=lambda chapter: chapter.meta.position)
