"""HTTP client for the O'Reilly learning platform API."""

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, as_completed, wait
from datetime import date, datetime
from typing import TypeVar
from urllib.parse import urljoin

import httpx
from pydantic import ValidationError

from orly.core.chapters import merge_chapter_pages, order_chapters, page_count
from orly.errors import AuthenticationFailed, FetchFailure, SubscriptionExpired
from orly.models import BillingInfo, Book, Chapter, ChapterMeta, ChaptersPage, Credentials, TocElement

log = logging.getLogger(__name__)

BASE_URL = "https://learning.oreilly.com/"
LOGIN_URL = "https://www.oreilly.com/member/auth/login/"
DEFAULT_CONCURRENCY = 20
DEFAULT_TIMEOUT = 60.0

DEFAULT_HEADERS = {
    "Accept": (
        "application/json,text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Encoding": "gzip, deflate",
    "Upgrade-Insecure-Requests": "1",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/90.0.4430.212 Safari/537.36"
    ),
}

T = TypeVar("T")
R = TypeVar("R")


def parse_expiration(value: str) -> datetime:
    """Parse a plain date or an RFC 3339 timestamp into a naive local datetime."""
    try:
        parsed = date.fromisoformat(value)
        return datetime(parsed.year, parsed.month, parsed.day)
    except ValueError:
        pass
    stamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if stamp.tzinfo is not None:
        stamp = stamp.astimezone().replace(tzinfo=None)
    return stamp


class OreillyClient:
    """Session against the remote API with bounded-concurrency batch downloads.

    Usage:
        with OreillyClient(concurrency=10) as client:
            client.cookie_auth(cookie)
            book = client.fetch_book_details("9781492056348")
    """

    def __init__(
        self,
        concurrency: int = DEFAULT_CONCURRENCY,
        base_url: str = BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.base_url = base_url
        self._http = httpx.Client(
            headers=DEFAULT_HEADERS,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def __enter__(self) -> "OreillyClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def make_url(self, endpoint: str) -> str:
        return urljoin(self.base_url, endpoint)

    # -- requests ------------------------------------------------------------

    def _get(self, url: str, **kwargs) -> httpx.Response:
        try:
            response = self._http.get(url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchFailure(url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise FetchFailure(url, str(e) or type(e).__name__) from e
        return response

    def _get_json(self, url: str, model: type[T], **kwargs) -> T:
        response = self._get(url, **kwargs)
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise FetchFailure(url, f"unexpected response: {e}") from e

    def fetch_bytes(self, url: str) -> bytes:
        return self._get(url).content

    def fetch_text(self, url: str) -> str:
        return self._get(url).text

    def _run_batch(self, func: Callable[[T], R], items: Iterable[T]) -> list[tuple[T, R]]:
        """Run func over items on the pool, in completion order.

        The first failure cancels everything not yet started and is re-raised.
        """
        items = list(items)
        if not items:
            return []
        pool = ThreadPoolExecutor(max_workers=min(self.concurrency, len(items)))
        try:
            futures = {pool.submit(func, item): item for item in items}
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            for future in done:
                error = future.exception()
                if error is not None:
                    raise error
            return [(futures[future], future.result()) for future in as_completed(futures)]
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

    def fetch_many(self, urls: Iterable[str]) -> list[tuple[str, bytes]]:
        """Download urls concurrently; results come back in completion order."""
        unique = list(dict.fromkeys(urls))
        log.debug(f"Downloading {len(unique)} files with {self.concurrency} workers")
        return self._run_batch(self.fetch_bytes, unique)

    # -- authentication ------------------------------------------------------

    def cookie_auth(self, cookie: str) -> None:
        """Reuse an existing browser session."""
        log.info("Logging in with session cookie")
        self._http.headers["Cookie"] = cookie
        self.check_subscription()

    def credentials_auth(self, email: str, password: str) -> None:
        log.info("Logging in with email and password")
        try:
            response = self._http.post(LOGIN_URL, json={"email": email, "password": password})
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise AuthenticationFailed(
                "Login request failed, make sure your email and password are correct: "
                f"{e}"
            ) from e

        try:
            credentials = Credentials.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise AuthenticationFailed(f"Unexpected login response: {e}") from e
        if not credentials.logged_in:
            raise AuthenticationFailed("Expected to be logged in")

        self.check_subscription()

    def check_subscription(self) -> None:
        log.info("Validating subscription")
        billing = self._get_json(self.make_url("api/v1/"), BillingInfo)
        log.debug(f"Billing details: {billing!r}")

        if billing.subscription.cancellation_date:
            expiration = parse_expiration(billing.subscription.cancellation_date)
        elif billing.trial.trial_expiration_date:
            expiration = parse_expiration(billing.trial.trial_expiration_date)
        else:
            raise SubscriptionExpired()

        log.info(f"Subscription expiration: {expiration}")
        if expiration < datetime.now():
            log.error(f"Subscription expired on {expiration}")
            raise SubscriptionExpired(str(expiration))

    # -- book data -----------------------------------------------------------

    def fetch_book_details(self, book_id: str) -> Book:
        log.info("Fetching book details")
        return self._get_json(self.make_url(f"api/v1/book/{book_id}/"), Book)

    def fetch_chapters_meta(self, book_id: str) -> list[ChapterMeta]:
        log.info("Loading chapter information")
        url = self.make_url(f"api/v1/book/{book_id}/chapter/")
        first_page = self._get_json(url, ChaptersPage)

        total = first_page.count
        per_page = len(first_page.results)
        if total and not per_page:
            raise FetchFailure(url, f"listing reports {total} chapters but the first page is empty")
        pages = page_count(total, per_page)
        log.info(
            f"Downloading {total} chapters, {per_page} chapters per page, {pages} pages"
        )

        def fetch_page(page: int) -> ChaptersPage:
            return self._get_json(url, ChaptersPage, params={"page": page})

        rest = sorted(self._run_batch(fetch_page, range(2, pages + 1)), key=lambda r: r[0])
        chapters = merge_chapter_pages(
            [first_page, *(page for _, page in rest)], expected_count=total, source=url
        )
        log.info("Finished downloading chapter meta")
        return chapters

    def fetch_chapters(self, book_id: str) -> list[Chapter]:
        """Chapter metadata plus markup, in reading order."""
        metas = self.fetch_chapters_meta(book_id)
        log.info("Fetching chapter content")

        def fetch_chapter(meta: ChapterMeta) -> Chapter:
            return Chapter(meta=meta, content=self.fetch_text(meta.content_url))

        return order_chapters(chapter for _, chapter in self._run_batch(fetch_chapter, metas))

    def fetch_toc(self, book_id: str) -> list[TocElement]:
        log.info("Loading table of contents")
        url = self.make_url(f"api/v1/book/{book_id}/toc/")
        response = self._get(url)
        try:
            return [TocElement.model_validate(item) for item in response.json()]
        except (ValueError, ValidationError) as e:
            raise FetchFailure(url, f"unexpected response: {e}") from e
