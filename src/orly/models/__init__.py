"""Data models."""

from orly.models.account import BillingInfo, Credentials
from orly.models.book import (
    Author,
    Book,
    Chapter,
    ChapterMeta,
    ChaptersPage,
    Publisher,
    Stylesheet,
    Subject,
    TocElement,
    to_xhtml,
)

__all__ = [
    # Book models
    "Author",
    "Book",
    "Chapter",
    "ChapterMeta",
    "ChaptersPage",
    "Publisher",
    "Stylesheet",
    "Subject",
    "TocElement",
    "to_xhtml",
    # Account models
    "BillingInfo",
    "Credentials",
]
