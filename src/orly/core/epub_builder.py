"""Assemble fetched book content into an EPUB archive."""

import logging
import mimetypes
import posixpath
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import BinaryIO
from urllib.parse import urljoin, urlsplit

from orly.core.archive_writer import EpubArchive
from orly.core.chapters import order_chapters
from orly.core.content_rewriter import ContentRewriter
from orly.core.image_normalizer import ImageNormalizer, KINDLE_MAX_WIDTH
from orly.core.registry import ResourceKind, ResourceRegistry
from orly.core.rendering import render_template
from orly.core.stylesheet_processor import StylesheetProcessor
from orly.core.toc_flattener import NavMap, flatten_toc
from orly.errors import BuildStateError, FetchFailure, ResourceResolutionFailure
from orly.models.book import Book, Chapter, ChapterMeta, TocElement

log = logging.getLogger(__name__)

CONTENT_DIR = "OEBPS"
XHTML_MEDIA_TYPE = "application/xhtml+xml"
CSS_MEDIA_TYPE = "text/css"

_ASSET_MEDIA_TYPES = {
    ".eot": "application/vnd.ms-fontobject",
    ".otf": "font/otf",
    ".svg": "image/svg+xml",
    ".ttf": "font/ttf",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
}

# Batch download: takes URLs, returns (url, bytes) pairs in any order, raises on
# the first failure.
FetchMany = Callable[[Iterable[str]], Iterable[tuple[str, bytes]]]


class BuildStage(Enum):
    """Lifecycle of an EpubBuilder."""

    CREATED = 1
    CHAPTERS_REGISTERED = 2
    RESOURCES_FETCHED = 3
    FINALIZED = 4


@dataclass
class BuildConfig:
    """Packaging options."""

    kindle: bool = False
    content_dir: str = CONTENT_DIR

    @property
    def max_image_width(self) -> int | None:
        return KINDLE_MAX_WIDTH if self.kindle else None


@dataclass(frozen=True)
class ManifestItem:
    id: str
    href: str
    media_type: str


def is_cover(meta: ChapterMeta) -> bool:
    """Best-effort guess: file stem or title equal to "cover"."""
    stem = PurePosixPath(meta.filename.lower()).stem
    return stem == "cover" or meta.title.strip().lower() == "cover"


def asset_media_type(path: str) -> str:
    extension = posixpath.splitext(path)[1].lower()
    if extension in _ASSET_MEDIA_TYPES:
        return _ASSET_MEDIA_TYPES[extension]
    return mimetypes.guess_type(path)[0] or "application/octet-stream"


class EpubBuilder:
    """Drive the packaging pipeline for one book.

    Stages must run in order: add_chapters, add_resources, finalize. add_toc may
    be called at any point before finalize.
    """

    def __init__(self, book: Book, config: BuildConfig | None = None):
        self.book = book
        self.config = config or BuildConfig()
        self.stage = BuildStage.CREATED
        self.registry = ResourceRegistry()
        self.archive = EpubArchive()
        self.image_normalizer = ImageNormalizer(max_width=self.config.max_image_width)
        self.stylesheet_processor = StylesheetProcessor(self.registry, kindle=self.config.kindle)
        self.nav_map: NavMap | None = None

        self.chapter_items: list[ManifestItem] = []
        self.image_items: list[ManifestItem] = []
        self.style_items: list[ManifestItem] = []
        self.asset_items: list[ManifestItem] = []
        self.cover_image: str | None = None
        self.cover_page: ManifestItem | None = None

        self.archive.write(
            "META-INF/container.xml",
            render_template("container.xml", content_dir=self.config.content_dir),
        )
        self.archive.write(
            "META-INF/com.apple.ibooks.display-options.xml",
            render_template("ibooks.xml"),
        )

    def _content_path(self, path: str) -> str:
        return f"{self.config.content_dir}/{path}"

    def _require(self, stage: BuildStage, action: str) -> None:
        if self.stage is not stage:
            raise BuildStateError(
                f"Cannot {action} in stage {self.stage.name}, expected {stage.name}"
            )

    # -- chapters ----------------------------------------------------------

    def add_chapters(self, chapters: Iterable[Chapter]) -> "EpubBuilder":
        """Rewrite and write every chapter, registering the resources they use."""
        self._require(BuildStage.CREATED, "add chapters")
        for chapter in order_chapters(chapters):
            self._add_chapter(chapter)

        self.registry.freeze(ResourceKind.IMAGE, ResourceKind.STYLESHEET)
        log.info(f"Found {len(self.registry.urls(ResourceKind.IMAGE))} images")
        log.info(f"Found {len(self.registry.urls(ResourceKind.STYLESHEET))} stylesheets")

        # Unique urls != unique filenames
        if not self.registry.is_unique(ResourceKind.IMAGE):
            for path, urls in self.registry.collisions(ResourceKind.IMAGE).items():
                log.warning(
                    f"Images have non-unique names, {len(urls)} URLs share {path}, "
                    "only the first one is kept"
                )

        self.stage = BuildStage.CHAPTERS_REGISTERED
        return self

    def _register_images(self, meta: ChapterMeta) -> list[str]:
        paths = []
        for reference in meta.images:
            url = urljoin(meta.asset_base_url, reference)
            if urlsplit(url).scheme not in ("http", "https"):
                raise ResourceResolutionFailure(
                    reference, f"not resolvable against {meta.asset_base_url}"
                )
            paths.append(self.registry.register_image(url))
        return paths

    def _add_chapter(self, chapter: Chapter) -> None:
        meta = chapter.meta
        log.debug(f"Processing {meta.filename}")
        document_dir = posixpath.dirname(meta.filename)

        images = self._register_images(meta)
        cover = is_cover(meta) and self.cover_page is None
        if cover:
            log.debug(f"Found cover in {meta.filename}")
            if len(images) != 1:
                log.warning(f"Cover chapter {meta.filename} has {len(images)} images")
            if images:
                self.cover_image = images[0]

        styles = [self.registry.register_stylesheet(url) for url in meta.stylesheet_urls()]
        style_links = [
            posixpath.relpath(path, document_dir) if document_dir else path
            for path in dict.fromkeys(styles)
        ]

        rewriter = ContentRewriter(
            self.registry, base_url=meta.asset_base_url, document_dir=document_dir
        )
        body = rewriter.extract(chapter.content, source=meta.filename)
        document = render_template(
            "chapter.xhtml",
            title=meta.title,
            language=self.book.language,
            styles=style_links,
            body=body,
            kindle=self.config.kindle,
        )
        self.archive.write(self._content_path(meta.filename), document)

        item = ManifestItem(
            id=f"chapter-{len(self.chapter_items)}",
            href=meta.filename,
            media_type=XHTML_MEDIA_TYPE,
        )
        self.chapter_items.append(item)
        if cover:
            self.cover_page = item

    # -- table of contents ---------------------------------------------------

    def add_toc(self, toc: list[TocElement]) -> "EpubBuilder":
        if self.stage is BuildStage.FINALIZED:
            raise BuildStateError("Cannot add table of contents after finalize")
        self.nav_map = flatten_toc(toc)
        log.info(f"Table of contents: {len(self.nav_map)} entries, depth {self.nav_map.depth}")
        return self

    # -- resources -----------------------------------------------------------

    def add_resources(self, fetch_many: FetchMany) -> "EpubBuilder":
        """Download, transform and write images, stylesheets and their assets."""
        self._require(BuildStage.CHAPTERS_REGISTERED, "add resources")
        self._add_images(fetch_many)
        self._add_stylesheets(fetch_many)
        self._add_stylesheet_assets(fetch_many)
        self.registry.freeze()
        self.stage = BuildStage.RESOURCES_FETCHED
        return self

    @staticmethod
    def _fetch_all(fetch_many: FetchMany, urls: list[str]) -> dict[str, bytes]:
        if not urls:
            return {}
        fetched = dict(fetch_many(urls))
        for url in urls:
            if url not in fetched:
                raise FetchFailure(url, "missing from batch download")
        return fetched

    def _add_images(self, fetch_many: FetchMany) -> None:
        entries = self.registry.entries(ResourceKind.IMAGE)
        log.info(f"Downloading and optimizing {len(entries)} images")
        fetched = self._fetch_all(fetch_many, [url for url, _ in entries])

        written: set[str] = set()
        for url, path in entries:
            if path in written:
                log.warning(f"Skipping {url}, {path} was already written")
                continue
            log.debug(f"Optimizing image {url}")
            image = self.image_normalizer.normalize(fetched[url], source=url)
            self.archive.write(self._content_path(path), image.data)
            written.add(path)
            self.image_items.append(
                ManifestItem(
                    id=f"image-{len(self.image_items)}",
                    href=path,
                    media_type=image.media_type,
                )
            )

    def _add_stylesheets(self, fetch_many: FetchMany) -> None:
        entries = self.registry.entries(ResourceKind.STYLESHEET)
        log.info(f"Downloading {len(entries)} css")
        fetched = self._fetch_all(fetch_many, [url for url, _ in entries])

        for url, path in entries:
            processed = self.stylesheet_processor.process(fetched[url], url, path)
            self.archive.write(self._content_path(path), processed.css)
            self.style_items.append(
                ManifestItem(id=f"style-{len(self.style_items)}", href=path, media_type=CSS_MEDIA_TYPE)
            )

    def _add_stylesheet_assets(self, fetch_many: FetchMany) -> None:
        entries = self.registry.entries(ResourceKind.STYLESHEET_ASSET)
        log.info(f"Downloading {len(entries)} css dependencies")
        fetched = self._fetch_all(fetch_many, [url for url, _ in entries])

        written: set[str] = set()
        for url, path in entries:
            if path in written:
                log.warning(f"Skipping {url}, {path} was already written")
                continue
            self.archive.write(self._content_path(path), fetched[url])
            written.add(path)
            self.asset_items.append(
                ManifestItem(
                    id=f"asset-{len(self.asset_items)}",
                    href=path,
                    media_type=asset_media_type(path),
                )
            )

    # -- package documents ---------------------------------------------------

    def render_manifest(self) -> str:
        """Render content.opf."""
        cover_image = None
        if self.cover_image:
            cover_image = next(
                (item for item in self.image_items if item.href == self.cover_image), None
            )
        return render_template(
            "content.opf",
            book=self.book,
            items=[*self.chapter_items, *self.image_items, *self.style_items, *self.asset_items],
            spine=self.chapter_items,
            cover_image=cover_image,
            cover_page=self.cover_page,
        )

    def render_navigation(self) -> str:
        """Render toc.ncx."""
        nav_map = self.nav_map
        if nav_map is None:
            log.warning("No table of contents was added, navigation will be empty")
            nav_map = NavMap(points=[], depth=0)
        return render_template(
            "toc.ncx",
            book=self.book,
            depth=nav_map.depth,
            navpoints=nav_map.points,
        )

    def finalize(self, sink: BinaryIO) -> int:
        """Write the package documents and stream the archive to sink."""
        self._require(BuildStage.RESOURCES_FETCHED, "finalize")
        log.info("Rendering OPF and generating final EPUB")
        self.archive.write(self._content_path("content.opf"), self.render_manifest())
        self.archive.write(self._content_path("toc.ncx"), self.render_navigation())
        self.stage = BuildStage.FINALIZED
        return self.archive.finalize(sink)


def build_epub(
    book: Book,
    chapters: Iterable[Chapter],
    toc: list[TocElement],
    fetch_many: FetchMany,
    sink: BinaryIO,
    config: BuildConfig | None = None,
) -> int:
    """Package a fully fetched book in one call. Returns bytes written."""
    builder = EpubBuilder(book, config)
    builder.add_chapters(chapters).add_toc(toc).add_resources(fetch_many)
    return builder.finalize(sink)
