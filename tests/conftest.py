"""Shared fixtures for packaging tests."""

import io
import os

import pytest
from PIL import Image

from orly.core.registry import ResourceRegistry
from orly.models import Book, Chapter, ChapterMeta, TocElement

ASSET_BASE = "https://learning.oreilly.com/library/view/test-book/9781000000001/"
STYLE_URL = "https://learning.oreilly.com/library/css/test-book/9781000000001/epub.css"
SITE_STYLE_URL = "https://learning.oreilly.com/static/site.css"


def make_image(
    size: tuple[int, int] = (1, 1),
    mode: str = "RGB",
    image_format: str = "PNG",
    noise: bool = False,
) -> bytes:
    """Encode a generated image; noise defeats compression to get large payloads."""
    if noise:
        channels = len(mode)
        image = Image.frombytes(mode, size, os.urandom(size[0] * size[1] * channels))
    else:
        image = Image.new(mode, size, color=(255,) * len(mode) if len(mode) > 1 else 255)
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


def chapter_markup(body: str) -> str:
    return (
        "<html><head><title>t</title></head><body>"
        f'<div id="sbo-rt-content">{body}</div>'
        "</body></html>"
    )


def make_meta(filename: str, position: int = 0, **overrides) -> ChapterMeta:
    data = {
        "asset_base_url": ASSET_BASE,
        "title": filename.rsplit(".", 1)[0].title(),
        "filename": filename,
        "content": f"{ASSET_BASE}{filename}",
        "position": position,
    }
    data.update(overrides)
    return ChapterMeta.model_validate(data)


@pytest.fixture
def registry() -> ResourceRegistry:
    return ResourceRegistry()


@pytest.fixture
def book() -> Book:
    return Book.model_validate(
        {
            "identifier": "9781000000001",
            "isbn": "9781000000001",
            "title": "Testing & Packaging",
            "authors": [{"name": "Ada Author"}, {"name": "Bob Writer"}],
            "subjects": [{"name": "Python"}],
            "publishers": [{"name": "Example Press"}],
            "description": "A book used in tests.",
            "rights": None,
            "issued": "2020-01-01",
            "pagecount": 42,
        }
    )


@pytest.fixture
def small_png() -> bytes:
    return make_image((4, 4))


@pytest.fixture
def large_jpeg() -> bytes:
    return make_image((2000, 400), image_format="JPEG", noise=True)


@pytest.fixture
def chapters() -> list[Chapter]:
    """A cover page and two chapters, returned out of reading order."""
    cover = Chapter(
        meta=make_meta("cover.html", 0, images=["images/cover.png"]),
        content=chapter_markup('<img src="images/cover.png" alt="cover"/>'),
    )
    first = Chapter(
        meta=make_meta(
            "ch01.html",
            1,
            images=["images/figure%201.png"],
            stylesheets=[{"full_path": "epub.css", "url": STYLE_URL}],
            site_styles=[SITE_STYLE_URL],
        ),
        content=chapter_markup(
            '<h1 id="intro">Intro</h1>'
            '<img src="images/figure%201.png"/>'
            '<a href="ch02.html#part">next</a>'
            '<a href="https://example.org/page.html">external</a>'
        ),
    )
    second = Chapter(
        meta=make_meta(
            "ch02.html",
            2,
            stylesheets=[{"full_path": "epub.css", "url": STYLE_URL}],
        ),
        content=chapter_markup('<h2 id="part">Part</h2><p>Text</p>'),
    )
    return [second, cover, first]


@pytest.fixture
def toc() -> list[TocElement]:
    return [
        TocElement.model_validate(item)
        for item in [
            {"label": "Cover", "href": "cover.html", "id": "cover", "depth": 1},
            {
                "label": "Intro",
                "href": "ch01.html",
                "id": "ch01",
                "depth": 1,
                "children": [
                    {
                        "label": "Part",
                        "href": "ch02.html#part",
                        "id": "ch02",
                        "fragment": "part",
                        "depth": 2,
                    }
                ],
            },
        ]
    ]


@pytest.fixture
def resources(small_png) -> dict[str, bytes]:
    """Remote files referenced by the chapters fixture."""
    return {
        f"{ASSET_BASE}images/cover.png": small_png,
        f"{ASSET_BASE}images/figure%201.png": small_png,
        STYLE_URL: (
            b"@font-face{font-family:X;src:url(fonts/x.woff)}"
            b"p{display:none;color:red}"
        ),
        SITE_STYLE_URL: b"body{margin:0}",
        "https://learning.oreilly.com/library/css/test-book/9781000000001/fonts/x.woff": b"wOFF",
    }


@pytest.fixture
def fetch_many(resources):
    """Batch fetcher serving the resources fixture, recording every request."""

    def fetch(urls):
        urls = list(urls)
        fetch.calls.append(urls)
        return [(url, resources[url]) for url in reversed(urls)]

    fetch.calls = []
    return fetch
