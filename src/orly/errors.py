"""Errors raised while fetching and packaging a book."""

# Long payloads (chapter markup, response bodies) are cut to this many characters
# before they end up in an error message.
MAX_SNIPPET_LENGTH = 200


def truncate(text: str, limit: int = MAX_SNIPPET_LENGTH) -> str:
    """Shorten text for diagnostics, marking how much was dropped."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... ({len(text) - limit} more characters)"


class OrlyError(Exception):
    """Base class for every failure that aborts a packaging run."""


class FetchFailure(OrlyError):
    """Network or remote service failure."""

    def __init__(self, url: str, message: str):
        self.url = url
        self.message = message
        super().__init__(f"Request to {url} failed: {message}")


class AuthenticationFailed(OrlyError):
    """Login was rejected by the remote service."""


class SubscriptionExpired(OrlyError):
    """The account has no active subscription or trial."""

    def __init__(self, expiration: str | None = None):
        self.expiration = expiration
        if expiration:
            super().__init__(f"Subscription expired on {expiration}")
        else:
            super().__init__("Subscription expired")


class ContentExtractionFailure(OrlyError):
    """Chapter markup did not contain exactly one content container."""

    def __init__(self, source: str, matches: int, markup: str):
        self.source = source
        self.matches = matches
        self.markup = markup
        super().__init__(
            f"Unable to find content div in chapter {source} "
            f"(found {matches} matches): {truncate(markup)}"
        )


class ResourceResolutionFailure(OrlyError):
    """An image or stylesheet reference could not be turned into a local path."""

    def __init__(self, reference: str, reason: str):
        self.reference = reference
        self.reason = reason
        super().__init__(f"Cannot resolve resource {reference!r}: {reason}")


class ImageDecodeFailure(OrlyError):
    """Image bytes could not be decoded or re-encoded."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"Failed to process image {source}: {message}")


class StylesheetParseFailure(OrlyError):
    """Stylesheet bytes could not be decoded or parsed."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"Failed to parse stylesheet {url}: {message}")


class ArchiveWriteFailure(OrlyError):
    """Writing an archive entry or the finished archive failed."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Could not write '{path}' to epub: {message}")


class BuildStateError(OrlyError):
    """A packaging step was called out of order or after finalization."""
