"""Tests for chapter content extraction and link rewriting."""

import pytest
from bs4 import BeautifulSoup
from lxml import etree

from conftest import ASSET_BASE, chapter_markup
from orly.core.content_rewriter import (
    ContentRewriter,
    clean_markup_strings,
    normalize_element_names,
    strip_invalid_attributes,
)
from orly.core.registry import ResourceKind
from orly.core.rendering import render_template
from orly.errors import ContentExtractionFailure


@pytest.fixture
def rewriter(registry) -> ContentRewriter:
    return ContentRewriter(registry, base_url=ASSET_BASE)


def parse_chapter(body: str) -> etree._Element:
    document = render_template(
        "chapter.xhtml", title="T", language="en", styles=[], body=body, kindle=False
    )
    return etree.fromstring(document.encode())


class TestRewriteLink:
    def test_relative_image_registered(self, rewriter, registry):
        assert rewriter.rewrite_link("images/fig.png") == "images/fig.png"
        assert registry.urls(ResourceKind.IMAGE) == [f"{ASSET_BASE}images/fig.png"]

    def test_absolute_image_registered(self, rewriter, registry):
        assert rewriter.rewrite_link("https://cdn.example/x/photo.JPG") == "images/photo.JPG"
        assert registry.get(ResourceKind.IMAGE, "https://cdn.example/x/photo.JPG")

    def test_image_relative_to_document_dir(self, registry):
        rewriter = ContentRewriter(registry, base_url=ASSET_BASE, document_dir="text")
        assert rewriter.rewrite_link("images/fig.png") == "../images/fig.png"

    def test_markup_link_keeps_fragment_and_query(self, rewriter):
        assert rewriter.rewrite_link("ch02.html#part") == "ch02.xhtml#part"
        assert rewriter.rewrite_link("ch02.htm?a=1#b") == "ch02.xhtml?a=1#b"

    def test_absolute_markup_link_untouched(self, rewriter):
        assert rewriter.rewrite_link("https://example.org/page.html") == "https://example.org/page.html"

    def test_other_links_untouched(self, rewriter, registry):
        for link in ("#note", "mailto:someone@example.org", "archive.zip", "../"):
            assert rewriter.rewrite_link(link) == link
        assert len(registry) == 0

    def test_defaults_to_synthetic_base(self, registry):
        rewriter = ContentRewriter(registry)
        assert rewriter.rewrite_link("a/b.png") == "images/b.png"
        assert registry.urls(ResourceKind.IMAGE) == ["https://example.net/a/b.png"]


class TestExtract:
    def test_returns_rewritten_container(self, rewriter):
        markup = chapter_markup(
            '<p>Hi</p><img src="images/fig.png"/><a href="ch02.html#x">next</a>'
        )
        body = rewriter.extract(markup, source="ch01.xhtml")
        assert body.startswith('<div id="sbo-rt-content">')
        assert 'src="images/fig.png"' in body
        assert 'href="ch02.xhtml#x"' in body
        assert "<title>" not in body

    def test_void_elements_are_self_closed(self, rewriter):
        body = rewriter.extract(chapter_markup("<p>a<br>b</p>"))
        assert "<br/>" in body

    def test_missing_container(self, rewriter):
        with pytest.raises(ContentExtractionFailure) as excinfo:
            rewriter.extract("<html><body><p>nothing</p></body></html>", source="ch09.xhtml")
        assert excinfo.value.matches == 0
        assert "ch09.xhtml" in str(excinfo.value)

    def test_duplicate_container(self, rewriter):
        markup = '<div id="sbo-rt-content">a</div><div id="sbo-rt-content">b</div>'
        with pytest.raises(ContentExtractionFailure) as excinfo:
            rewriter.extract(markup)
        assert excinfo.value.matches == 2

    def test_error_message_is_truncated(self, rewriter):
        markup = "<p>" + "x" * 5000 + "</p>"
        with pytest.raises(ContentExtractionFailure) as excinfo:
            rewriter.extract(markup)
        assert len(str(excinfo.value)) < 500


class TestStripInvalidAttributes:
    def test_unknown_prefix_removed(self):
        soup = BeautifulSoup('<div><p foo:bar="1" data-x="2" epub:type="note">t</p></div>', "lxml")
        removed = strip_invalid_attributes(soup.div)
        assert removed == 1
        assert soup.p.attrs == {"data-x": "2", "epub:type": "note"}


class TestWellFormedOutput:
    XHTML = "{http://www.w3.org/1999/xhtml}"

    def test_script_text_escaped(self, rewriter):
        body = rewriter.extract(chapter_markup("<p>x</p><script>if (a < b && c) {}</script>"))
        assert "a &lt; b &amp;&amp; c" in body
        script = parse_chapter(body).find(f".//{self.XHTML}script")
        assert script.text == "if (a < b && c) {}"

    def test_style_text_escaped(self, rewriter):
        rule = 'p > a::after { content: "&" }'
        body = rewriter.extract(chapter_markup(f"<p>x</p><style>{rule}</style>"))
        style = parse_chapter(body).find(f".//{self.XHTML}div/{self.XHTML}style")
        assert style.text == rule

    def test_double_hyphen_comment(self, rewriter):
        body = rewriter.extract(chapter_markup("<!-- a -- b --><p>x</p>"))
        comments = parse_chapter(body).xpath("//comment()")
        assert [comment.text for comment in comments] == [" a - - b "]

    def test_prefixed_math(self, rewriter):
        body = rewriter.extract(chapter_markup("<m:math><m:mi>x</m:mi></m:math>"))
        document = parse_chapter(body)
        mathml = "{http://www.w3.org/1998/Math/MathML}"
        assert document.find(f".//{mathml}math/{mathml}mi").text == "x"

    def test_epub_prefix_kept(self, rewriter):
        body = rewriter.extract(chapter_markup("<epub:switch><p>x</p></epub:switch>"))
        document = parse_chapter(body)
        assert document.find(".//{http://www.idpf.org/2007/ops}switch") is not None

    def test_unprefixed_svg_gets_namespace(self, rewriter):
        body = rewriter.extract(chapter_markup('<svg width="10"><rect width="1"/></svg>'))
        document = parse_chapter(body)
        assert document.find(".//{http://www.w3.org/2000/svg}rect") is not None


class TestNormalizeElementNames:
    def test_unknown_prefix_dropped(self):
        soup = BeautifulSoup("<div><o:p>t</o:p><m:math><m:mi>x</m:mi></m:math></div>", "lxml")
        assert normalize_element_names(soup.div) == 3
        assert [tag.name for tag in soup.div.find_all(True)] == ["p", "math", "mi"]
        assert soup.math["xmlns"] == "http://www.w3.org/1998/Math/MathML"

    def test_declared_namespace_kept(self):
        soup = BeautifulSoup('<div><math xmlns="urn:custom"><mi>x</mi></math></div>', "lxml")
        assert normalize_element_names(soup.div) == 0
        assert soup.math["xmlns"] == "urn:custom"


class TestCleanMarkupStrings:
    def test_trailing_hyphen_padded(self):
        soup = BeautifulSoup("<div><!--note---><p>x</p></div>", "lxml")
        clean_markup_strings(soup.div)
        assert "<!--note- -->" in soup.div.decode()

    def test_plain_comment_untouched(self):
        soup = BeautifulSoup("<div><!-- keep --></div>", "lxml")
        clean_markup_strings(soup.div)
        assert soup.div.decode() == "<div><!-- keep --></div>"
