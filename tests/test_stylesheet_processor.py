"""Tests for stylesheet rewriting and dependency extraction."""

import pytest

from orly.core.registry import ResourceKind
from orly.core.stylesheet_processor import StylesheetProcessor
from orly.errors import StylesheetParseFailure

CSS_URL = "https://h/library/css/book/epub.css"


@pytest.fixture
def processor(registry) -> StylesheetProcessor:
    return StylesheetProcessor(registry)


@pytest.fixture
def kindle_processor(registry) -> StylesheetProcessor:
    return StylesheetProcessor(registry, kindle=True)


class TestMinify:
    def test_output_is_minified(self, processor):
        result = processor.process(b"p {\n  color: red;\n}\n", CSS_URL, "styles/0.css")
        assert result.css == "p{color:red}"
        assert result.dependencies == []

    def test_byte_order_mark_accepted(self, processor):
        result = processor.process(b"\xef\xbb\xbfa{color:blue}", CSS_URL, "styles/0.css")
        assert "color:blue" in result.css

    def test_invalid_utf8_rejected(self, processor):
        with pytest.raises(StylesheetParseFailure):
            processor.process(b"p{content:'\xff\xfe'}", CSS_URL, "styles/0.css")


class TestKindleRewrite:
    def test_display_none_becomes_hidden(self, kindle_processor):
        result = kindle_processor.process(b".x{display:none;color:red}", CSS_URL, "styles/0.css")
        assert "display" not in result.css
        assert "visibility:hidden" in result.css
        assert "color:red" in result.css

    def test_nested_media_rules(self, kindle_processor):
        css = b"@media print{.x{display:none}}"
        result = kindle_processor.process(css, CSS_URL, "styles/0.css")
        assert "visibility:hidden" in result.css

    def test_other_display_values_kept(self, kindle_processor):
        result = kindle_processor.process(b".x{display:block}", CSS_URL, "styles/0.css")
        assert "display:block" in result.css

    def test_untouched_without_kindle(self, processor):
        result = processor.process(b".x{display:none}", CSS_URL, "styles/0.css")
        assert "display:none" in result.css


class TestDependencies:
    def test_urls_registered_and_rewritten(self, processor, registry):
        css = b"@font-face{font-family:F;src:url(fonts/f.woff)}.bg{background:url('../img/bg.png')}"
        result = processor.process(css, CSS_URL, "styles/0.css")

        assert [dep.url for dep in result.dependencies] == [
            "https://h/library/css/book/fonts/f.woff",
            "https://h/library/css/img/bg.png",
        ]
        assert registry.entries(ResourceKind.STYLESHEET_ASSET) == [
            ("https://h/library/css/book/fonts/f.woff", "styles/fonts/f.woff"),
            ("https://h/library/css/img/bg.png", "styles/assets/bg.png"),
        ]
        assert "fonts/f.woff" in result.css
        assert "assets/bg.png" in result.css
        assert "../img" not in result.css

    def test_fragment_preserved(self, processor):
        result = processor.process(b".i{background:url(icons.svg#star)}", CSS_URL, "styles/0.css")
        assert result.dependencies[0].url == "https://h/library/css/book/icons.svg"
        assert "icons.svg#star" in result.css

    def test_data_urls_left_alone(self, processor, registry):
        css = b".x{background:url(data:image/png;base64,AAAA)}"
        result = processor.process(css, CSS_URL, "styles/0.css")
        assert result.dependencies == []
        assert len(registry) == 0

    def test_imports_dropped(self, processor, registry):
        css = b'@import url("other.css");p{color:red}'
        result = processor.process(css, CSS_URL, "styles/0.css")
        assert result.imports == ["other.css"]
        assert "@import" not in result.css
        assert len(registry) == 0
