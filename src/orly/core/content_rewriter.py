"""Extract chapter content and point its links at packaged files."""

import logging
import posixpath
import re
import warnings
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import (
    BeautifulSoup,
    Comment,
    Declaration,
    Doctype,
    ProcessingInstruction,
    Tag,
    XMLParsedAsHTMLWarning,
)
from bs4.dammit import EntitySubstitution
from bs4.formatter import HTMLFormatter
from PIL import Image

from orly.core.registry import ResourceRegistry
from orly.errors import ContentExtractionFailure
from orly.models.book import to_xhtml

# Chapters are often XHTML served as HTML
warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

log = logging.getLogger(__name__)

# Relative links are resolved against this when no chapter base is known
SYNTHETIC_BASE_URL = "https://example.net/"

CONTENT_SELECTOR = "div#sbo-rt-content"

LINK_ATTRIBUTES = frozenset(
    {
        "action",
        "archive",
        "background",
        "cite",
        "classid",
        "codebase",
        "data",
        "href",
        "longdesc",
        "profile",
        "src",
        "usemap",
        # Not standard
        "dynsrc",
        "lowsrc",
        # HTML5
        "formaction",
    }
)

MARKUP_EXTENSIONS = frozenset({".html", ".htm"})

# Prefixes declared on the chapter template's root element
_KNOWN_PREFIXES = frozenset({"xml", "xmlns", "epub", "xlink"})
_XML_NAME_RE = re.compile(r"^[A-Za-z_][\w.\-]*(:[A-Za-z_][\w.\-]*)?$")

# Element prefixes that stay valid under the template root
_ELEMENT_PREFIXES = frozenset({"epub"})

# Foreign vocabularies that need their own default namespace in XHTML
FOREIGN_NAMESPACES = {
    "math": "http://www.w3.org/1998/Math/MathML",
    "svg": "http://www.w3.org/2000/svg",
}

# Escapes script and style text too, which HTML serialization leaves raw
XHTML_FORMATTER = HTMLFormatter(
    entity_substitution=EntitySubstitution.substitute_xml,
    cdata_containing_tags=set(),
)


def image_extensions() -> frozenset[str]:
    """File extensions Pillow can decode, plus SVG."""
    return frozenset(Image.registered_extensions()) | {".svg"}


class ContentRewriter:
    """Parse chapter markup, rewrite links and serialize the content div."""

    def __init__(
        self,
        registry: ResourceRegistry,
        base_url: str | None = None,
        document_dir: str = "",
    ):
        """
        Args:
            registry: Registry that assigns local image paths.
            base_url: Base for relative links, the chapter's asset base URL.
            document_dir: Directory of the output document inside the content
                root; image links are made relative to it.
        """
        self.registry = registry
        self.base_url = base_url or SYNTHETIC_BASE_URL
        self.document_dir = document_dir
        self._image_extensions = image_extensions()

    def rewrite_link(self, link: str) -> str:
        """Map one link to its packaged location, or return it unchanged."""
        original = urlsplit(link.strip())
        relative = not original.scheme
        if relative:
            absolute = urlsplit(urljoin(self.base_url, link.strip()))
        else:
            absolute = original

        filename = posixpath.basename(absolute.path)
        if not filename:
            return link

        extension = posixpath.splitext(filename)[1].lower()
        if extension in self._image_extensions and absolute.scheme in ("http", "https"):
            image_url = urlunsplit(absolute._replace(fragment=""))
            path = self.registry.register_image(image_url)
            if self.document_dir:
                return posixpath.relpath(path, self.document_dir)
            return path

        if extension in MARKUP_EXTENSIONS and relative:
            new_link = to_xhtml(filename)
            if absolute.query:
                new_link += f"?{absolute.query}"
            if absolute.fragment:
                new_link += f"#{absolute.fragment}"
            return new_link

        return link

    def rewrite_links(self, soup: BeautifulSoup) -> int:
        """Rewrite every URL-bearing attribute in place. Returns the number changed."""
        rewritten = 0
        for element in soup.find_all(lambda tag: not LINK_ATTRIBUTES.isdisjoint(tag.attrs)):
            for attribute in LINK_ATTRIBUTES.intersection(element.attrs):
                value = element[attribute]
                if isinstance(value, list):
                    value = " ".join(value)
                new_value = self.rewrite_link(value)
                if new_value != value:
                    element[attribute] = new_value
                    rewritten += 1
        return rewritten

    def extract(self, markup: str, source: str = "<chapter>") -> str:
        """Return the rewritten content container serialized as XHTML.

        Raises:
            ContentExtractionFailure: If the markup has zero or several content
                containers.
        """
        soup = BeautifulSoup(markup, "lxml")
        rewritten = self.rewrite_links(soup)
        log.debug(f"Links rewritten in {source}: {rewritten}")

        matches = soup.select(CONTENT_SELECTOR)
        if len(matches) != 1:
            raise ContentExtractionFailure(source, len(matches), markup)

        content = matches[0]
        stripped = strip_invalid_attributes(content)
        if stripped:
            log.debug(f"Invalid attributes stripped in {source}: {stripped}")
        renamed = normalize_element_names(content)
        if renamed:
            log.debug(f"Element names normalized in {source}: {renamed}")
        clean_markup_strings(content)
        return content.decode(formatter=XHTML_FORMATTER)


def strip_invalid_attributes(root: Tag) -> int:
    """Drop attributes that would make the serialized fragment invalid XML."""
    stripped = 0
    for element in [root, *root.find_all(True)]:
        for name in list(element.attrs):
            if not _XML_NAME_RE.match(name):
                del element[name]
                stripped += 1
                continue
            prefix, _, _ = name.rpartition(":")
            if prefix and prefix not in _KNOWN_PREFIXES:
                del element[name]
                stripped += 1
    return stripped


def normalize_element_names(root: Tag) -> int:
    """Make element names valid under the chapter template's namespaces.

    Undeclared prefixes are dropped, so ``m:math`` becomes ``math``. MathML
    and SVG roots get their default namespace when they lack one. Elements
    whose names are not XML names at all are unwrapped. Returns the number
    of elements changed.
    """
    changed = 0
    for element in root.find_all(True):
        name = element.name
        if not _XML_NAME_RE.match(name):
            element.unwrap()
            changed += 1
            continue
        prefix, _, local = name.rpartition(":")
        if prefix and prefix not in _ELEMENT_PREFIXES:
            element.name = local
            element.prefix = None
            changed += 1
        namespace = FOREIGN_NAMESPACES.get(element.name)
        if namespace and "xmlns" not in element.attrs:
            element["xmlns"] = namespace
    return changed


def clean_markup_strings(root: Tag) -> None:
    """Fix or drop comments and declarations that XML parsers reject."""
    special = (Comment, Declaration, Doctype, ProcessingInstruction)
    for string in root.find_all(string=lambda s: isinstance(s, special)):
        if not isinstance(string, Comment):
            string.extract()
            continue
        text = str(string)
        while "--" in text:
            text = text.replace("--", "- -")
        if text.endswith("-"):
            text += " "
        if text != string:
            string.replace_with(Comment(text))
