"""Map external resource URLs to unique paths inside the package."""

import logging
import posixpath
import re
from collections import Counter
from enum import Enum
from urllib.parse import unquote, urlsplit, urlunsplit

from orly.errors import BuildStateError, ResourceResolutionFailure

log = logging.getLogger(__name__)

IMAGES_DIR = "images"
STYLES_DIR = "styles"
STYLE_ASSETS_DIR = f"{STYLES_DIR}/assets"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class ResourceKind(str, Enum):
    """Resource categories, each with its own namespace."""

    IMAGE = "image"
    STYLESHEET = "stylesheet"
    STYLESHEET_ASSET = "stylesheet_asset"


def safe_filename(name: str) -> str:
    """Percent-decode a path segment and replace characters unsafe in hrefs."""
    return _UNSAFE_CHARS.sub("_", unquote(name))


def fetch_key(url: str) -> str:
    """Drop the fragment, which never reaches the server."""
    return urlunsplit(urlsplit(url)._replace(fragment=""))


class ResourceRegistry:
    """Deduplicate resource URLs into stable local paths.

    Paths are assigned in insertion order: the first time a URL is seen it gets
    the next slot, afterwards the same path is returned. Images are named after
    the last segment of their URL path, stylesheets after an insertion counter.
    """

    def __init__(self) -> None:
        self._entries: dict[ResourceKind, dict[str, str]] = {
            kind: {} for kind in ResourceKind
        }
        self._frozen: set[ResourceKind] = set()

    def register(self, kind: ResourceKind, url: str, reference: str | None = None) -> str:
        """Return the local path for url, assigning one on first sight.

        reference is the url as written in the referring stylesheet and is only
        used for stylesheet assets.
        """
        url = fetch_key(url)
        entries = self._entries[kind]
        if url in entries:
            return entries[url]
        if kind in self._frozen:
            raise BuildStateError(f"Cannot register {url}: {kind.value} registry is frozen")

        if kind is ResourceKind.IMAGE:
            path = self._image_path(url)
        elif kind is ResourceKind.STYLESHEET:
            path = f"{STYLES_DIR}/{len(entries)}.css"
        else:
            path = self._asset_path(url, reference)

        if path in entries.values():
            log.warning(
                f"{kind.value} {url} maps to {path} which is already used, "
                "it will be overwritten"
            )
        entries[url] = path
        log.debug(f"Registered {kind.value} {url} -> {path}")
        return path

    def register_image(self, url: str) -> str:
        return self.register(ResourceKind.IMAGE, url)

    def register_stylesheet(self, url: str) -> str:
        return self.register(ResourceKind.STYLESHEET, url)

    def register_stylesheet_asset(self, url: str, reference: str) -> str:
        return self.register(ResourceKind.STYLESHEET_ASSET, url, reference)

    def get(self, kind: ResourceKind, url: str) -> str | None:
        return self._entries[kind].get(fetch_key(url))

    def entries(self, kind: ResourceKind) -> list[tuple[str, str]]:
        """(url, path) pairs in registration order."""
        return list(self._entries[kind].items())

    def urls(self, kind: ResourceKind) -> list[str]:
        return list(self._entries[kind])

    def paths(self, kind: ResourceKind) -> list[str]:
        """Distinct local paths in registration order."""
        return list(dict.fromkeys(self._entries[kind].values()))

    def freeze(self, *kinds: ResourceKind) -> None:
        """Reject new URLs for the given kinds (all kinds when none given)."""
        self._frozen.update(kinds or ResourceKind)

    def is_frozen(self, kind: ResourceKind) -> bool:
        return kind in self._frozen

    def collisions(self, kind: ResourceKind) -> dict[str, list[str]]:
        """Local paths claimed by more than one URL."""
        counts = Counter(self._entries[kind].values())
        return {
            path: [url for url, p in self._entries[kind].items() if p == path]
            for path, count in counts.items()
            if count > 1
        }

    def is_unique(self, kind: ResourceKind) -> bool:
        entries = self._entries[kind]
        return len(set(entries.values())) == len(entries)

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())

    @staticmethod
    def _image_path(url: str) -> str:
        filename = posixpath.basename(urlsplit(url).path)
        if not filename:
            raise ResourceResolutionFailure(url, "image URL has no file name")
        return f"{IMAGES_DIR}/{safe_filename(filename)}"

    @staticmethod
    def _asset_path(url: str, reference: str | None) -> str:
        # Relative references that stay inside the stylesheet directory keep
        # their layout, everything else is flattened into styles/assets/.
        if reference:
            ref_path = urlsplit(reference)
            if not ref_path.scheme and not ref_path.netloc and ref_path.path:
                normalized = posixpath.normpath(ref_path.path)
                if not normalized.startswith(("../", "/")) and normalized not in (".", ".."):
                    segments = [safe_filename(part) for part in normalized.split("/")]
                    return "/".join([STYLES_DIR, *segments])

        filename = posixpath.basename(urlsplit(url).path)
        if not filename:
            raise ResourceResolutionFailure(url, "stylesheet dependency has no file name")
        return f"{STYLE_ASSETS_DIR}/{safe_filename(filename)}"
