"""Data models for book structure as served by the remote API."""

import re
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

_MARKUP_EXTENSION_RE = re.compile(r"\.html?(?=$|[?#])", re.IGNORECASE)


def to_xhtml(name: str) -> str:
    """Swap an .html/.htm extension for .xhtml, keeping query and fragment."""
    return _MARKUP_EXTENSION_RE.sub(".xhtml", name, count=1)


def _require_absolute(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"expected an absolute URL, got {url!r}")
    return url


class Author(BaseModel):
    name: str


class Subject(BaseModel):
    name: str


class Publisher(BaseModel):
    name: str


class Book(BaseModel):
    """Book-level metadata."""

    identifier: str
    isbn: str
    title: str
    authors: list[Author] = Field(default_factory=list)
    subjects: list[Subject] = Field(default_factory=list)
    publishers: list[Publisher] = Field(default_factory=list)
    description: str = ""
    rights: str = ""
    issued: str = ""
    language: str = "en"
    pagecount: int = 0
    # Remote bookkeeping, not used for packaging
    cover: str | None = None
    chapter_list: str | None = None
    toc: str | None = None
    flat_toc: str | None = None
    source: str | None = None

    @field_validator("rights", "description", "issued", mode="before")
    @classmethod
    def _none_to_empty(cls, value: str | None) -> str:
        return value or ""

    @property
    def author_names(self) -> str:
        return ", ".join(author.name for author in self.authors)

    @property
    def publisher_names(self) -> str:
        return ", ".join(publisher.name for publisher in self.publishers)


class Stylesheet(BaseModel):
    """Stylesheet descriptor attached to a chapter."""

    full_path: str
    url: str
    original_url: str = ""

    @field_validator("url")
    @classmethod
    def _absolute(cls, value: str) -> str:
        return _require_absolute(value)


class ChapterMeta(BaseModel):
    """Chapter metadata from the paginated chapter listing."""

    model_config = ConfigDict(populate_by_name=True)

    asset_base_url: str
    title: str
    filename: str
    images: list[str] = Field(default_factory=list)
    stylesheets: list[Stylesheet] = Field(default_factory=list)
    site_styles: list[str] = Field(default_factory=list)
    content_url: str = Field(alias="content")
    position: int = 0

    @field_validator("asset_base_url", "content_url")
    @classmethod
    def _absolute(cls, value: str) -> str:
        return _require_absolute(value)

    @field_validator("site_styles")
    @classmethod
    def _absolute_all(cls, value: list[str]) -> list[str]:
        return [_require_absolute(url) for url in value]

    @field_validator("filename")
    @classmethod
    def _xhtml_filename(cls, value: str) -> str:
        return to_xhtml(value)

    def stylesheet_urls(self) -> list[str]:
        """Chapter stylesheets followed by site-wide ones."""
        return [style.url for style in self.stylesheets] + list(self.site_styles)


class Chapter(BaseModel):
    """Chapter metadata paired with its fetched markup."""

    meta: ChapterMeta
    content: str


class ChaptersPage(BaseModel):
    """One page of the chapter listing."""

    count: int
    results: list[ChapterMeta] = Field(default_factory=list)


class TocElement(BaseModel):
    """Single entry in the remote table of contents."""

    depth: int = 0
    url: str = ""
    fragment: str = ""
    filename: str = ""
    label: str
    full_path: str = ""
    href: str
    id: str
    media_type: str = ""
    minutes_required: float = 0.0
    natural_key: list[str] = Field(default_factory=list)
    children: list["TocElement"] = Field(default_factory=list)

    @field_validator("fragment", mode="before")
    @classmethod
    def _none_to_empty(cls, value: str | None) -> str:
        return value or ""
