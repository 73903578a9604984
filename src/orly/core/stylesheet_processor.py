"""Stylesheet minification, e-reader rewrites and dependency extraction."""

import logging
import posixpath
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlsplit

import cssutils
from cssutils.css import CSSRule, CSSStyleDeclaration

from orly.core.registry import ResourceRegistry, fetch_key
from orly.errors import StylesheetParseFailure

log = logging.getLogger(__name__)

# cssutils reports every unknown property through its own logger
cssutils.log.setLevel(logging.CRITICAL)


@dataclass
class StylesheetDependency:
    """A url(...) reference found in a stylesheet."""

    url: str
    path: str


@dataclass
class ProcessedStylesheet:
    """Minified stylesheet plus everything it references."""

    css: str
    dependencies: list[StylesheetDependency] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)


def hide_instead_of_remove(style: CSSStyleDeclaration) -> bool:
    """Replace an effective ``display: none`` with ``visibility: hidden``.

    Kindle's conversion rejects display:none on large content blocks, while
    visibility:hidden is accepted. The element still takes up space.
    """
    if style.getPropertyValue("display").strip().lower() != "none":
        return False
    priority = style.getPropertyPriority("display")
    style.removeProperty("display")
    style.setProperty("visibility", "hidden", priority)
    return True


def rewrite_css_rules(rules) -> int:
    """Apply hide_instead_of_remove to every style rule, descending into groups."""
    replaced = 0
    for rule in rules:
        if rule.type == CSSRule.STYLE_RULE:
            if hide_instead_of_remove(rule.style):
                log.warning(f"Found display: none in '{rule.selectorText}', replacing")
                replaced += 1
        elif hasattr(rule, "cssRules"):
            replaced += rewrite_css_rules(rule.cssRules)
    return replaced


def render_minified(sheet) -> str:
    prefs = cssutils.ser.prefs
    prefs.useMinified()
    try:
        return sheet.cssText.decode("utf-8")
    finally:
        prefs.useDefaults()


class StylesheetProcessor:
    """Turn fetched stylesheet bytes into the packaged stylesheet."""

    def __init__(self, registry: ResourceRegistry, kindle: bool = False):
        self.registry = registry
        self.kindle = kindle

    def parse(self, data: bytes, url: str):
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise StylesheetParseFailure(url, f"not valid UTF-8: {e}") from e
        try:
            return cssutils.parseString(text, href=url, validate=False)
        except Exception as e:
            raise StylesheetParseFailure(url, str(e)) from e

    def process(self, data: bytes, url: str, path: str) -> ProcessedStylesheet:
        """Parse, rewrite and minify one stylesheet.

        Args:
            data: Raw stylesheet bytes.
            url: Absolute URL the stylesheet was fetched from; url(...)
                references are resolved against it.
            path: Registered local path of the stylesheet.
        """
        sheet = self.parse(data, url)

        if self.kindle:
            rewrite_css_rules(sheet.cssRules)

        imports = self._strip_imports(sheet, url)
        dependencies = self._extract_dependencies(sheet, url, path)
        return ProcessedStylesheet(
            css=render_minified(sheet),
            dependencies=dependencies,
            imports=imports,
        )

    def _strip_imports(self, sheet, url: str) -> list[str]:
        # Imported stylesheets are not fetched
        imports = []
        for index in reversed(range(sheet.cssRules.length)):
            rule = sheet.cssRules[index]
            if rule.type == CSSRule.IMPORT_RULE:
                log.warning(f"css import dependency in {url}: {rule.href}")
                imports.insert(0, rule.href)
                sheet.deleteRule(index)
        return imports

    def _extract_dependencies(self, sheet, url: str, path: str) -> list[StylesheetDependency]:
        dependencies: dict[str, StylesheetDependency] = {}
        stylesheet_dir = posixpath.dirname(path)

        def replace(reference: str) -> str:
            if not reference or reference.startswith(("data:", "#")):
                return reference
            absolute = urljoin(url, reference)
            key = fetch_key(absolute)
            local_path = self.registry.register_stylesheet_asset(key, reference)
            dependencies.setdefault(key, StylesheetDependency(url=key, path=local_path))

            new_reference = posixpath.relpath(local_path, stylesheet_dir)
            fragment = urlsplit(absolute).fragment
            if fragment:
                new_reference += f"#{fragment}"
            return new_reference

        cssutils.replaceUrls(sheet, replace, ignoreImportRules=True)
        return list(dependencies.values())
