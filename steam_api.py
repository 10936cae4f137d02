from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import List, Optional, Union

import requests
from selectolax.parser import HTMLParser

from errors import ResolutionError
from http_utils import RetryPolicy, is_dns_error, retry_after_seconds
from telemetry import start_span

STEAM_COMMUNITY_BASE = "https://steamcommunity.com/sharedfiles/filedetails"
DEFAULT_TITLE = "Untitled"
_SHAREDFILE_PREFIX = "sharedfile_"


@dataclass(frozen=True)
class PageSelectors:
    title: str = ".workshopItemTitle"
    changelog: str = ".changeLogCtn p[id]"
    collection_item: str = '[id^="sharedfile_"]'


@dataclass(frozen=True)
class WorkshopItem:
    id: str
    title: str
    version_marker: str


@dataclass(frozen=True)
class WorkshopCollection:
    id: str
    title: str
    member_ids: List[str] = field(default_factory=list)


ResolveResult = Union[WorkshopItem, WorkshopCollection]


def _clean_text(value: str | None) -> str:
    if not value:
        return ""
    return re.sub(r"\s+", " ", value).strip()


def parse_title(html_text: str, selectors: PageSelectors) -> str:
    node = HTMLParser(html_text).css_first(selectors.title)
    title = _clean_text(node.text() if node else "")
    return title or DEFAULT_TITLE


def parse_changelog_id(html_text: str, selectors: PageSelectors) -> Optional[str]:
    for node in HTMLParser(html_text).css(selectors.changelog):
        value = (node.attributes.get("id") or "").strip()
        if value:
            return value
    return None


def parse_collection_members(
    html_text: str, selectors: PageSelectors, collection_id: str = ""
) -> List[str]:
    members: List[str] = []
    seen = set()
    for node in HTMLParser(html_text).css(selectors.collection_item):
        raw_id = node.attributes.get("id") or ""
        if not raw_id.startswith(_SHAREDFILE_PREFIX):
            continue
        member_id = raw_id[len(_SHAREDFILE_PREFIX):]
        if not member_id or member_id in seen or member_id == collection_id:
            continue
        seen.add(member_id)
        members.append(member_id)
    return members


class WorkshopResolver:
    """Resolves a workshop ID into an item or a collection by scraping Steam pages.

    A changelog page with at least one entry means a single item whose version
    marker is the newest entry id. Otherwise the details page is read as a
    collection.
    """

    def __init__(
        self,
        *,
        timeout: int = 30,
        policy: RetryPolicy | None = None,
        selectors: PageSelectors | None = None,
        session: requests.Session | None = None,
        base_url: str = STEAM_COMMUNITY_BASE,
    ) -> None:
        self.timeout = int(timeout)
        self.policy = policy or RetryPolicy(retries=2, backoff=1.0)
        self.selectors = selectors or PageSelectors()
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self._last_request_ts = 0.0

    def resolve(self, workshop_id: str) -> ResolveResult:
        workshop_id = str(workshop_id).strip()
        if not workshop_id.isdigit():
            raise ResolutionError(workshop_id, "workshop id must be numeric")
        with start_span("steam.resolve", {"steam.item_id": workshop_id}) as span:
            changelog_html = self.fetch_html(
                f"{self.base_url}/changelog/{workshop_id}", workshop_id
            )
            title = parse_title(changelog_html, self.selectors)
            changelog_id = parse_changelog_id(changelog_html, self.selectors)
            if changelog_id:
                span.set_attribute("steam.kind", "item")
                logging.debug("Steam %s is an item (changelog %s)", workshop_id, changelog_id)
                return WorkshopItem(id=workshop_id, title=title, version_marker=changelog_id)

            collection_html = self.fetch_html(
                f"{self.base_url}/?id={workshop_id}", workshop_id
            )
            members = parse_collection_members(collection_html, self.selectors, workshop_id)
            span.set_attribute("steam.kind", "collection")
            span.set_attribute("steam.collection_size", len(members))
            logging.debug("Steam %s is a collection with %s items", workshop_id, len(members))
            return WorkshopCollection(id=workshop_id, title=title, member_ids=members)

    def fetch_html(self, url: str, workshop_id: str) -> str:
        response = self._request(url, workshop_id)
        if response.status_code != 200:
            raise ResolutionError(workshop_id, f"HTTP {response.status_code} from {url}")
        return response.text

    def _request(self, url: str, workshop_id: str) -> requests.Response:
        attempts = self.policy.attempts
        for attempt in range(1, attempts + 1):
            self._respect_request_delay()
            try:
                response = self.session.get(
                    url,
                    headers={"User-Agent": "Mozilla/5.0"},
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                if is_dns_error(exc):
                    logging.warning("Steam DNS error for %s: %s", url, exc)
                if attempt >= attempts:
                    raise ResolutionError(workshop_id, str(exc)) from exc
                self._sleep_backoff(attempt, exc)
                continue
            finally:
                self._last_request_ts = time.monotonic()

            if self.policy.should_retry(response.status_code, attempt):
                wait_for = retry_after_seconds(response.headers)
                if wait_for > 0:
                    time.sleep(wait_for)
                self._sleep_backoff(attempt, RuntimeError(f"HTTP {response.status_code}"))
                continue
            return response
        raise ResolutionError(workshop_id, f"no response from {url}")

    def _respect_request_delay(self) -> None:
        if self.policy.request_delay <= 0:
            return
        wait_for = self.policy.request_delay - (time.monotonic() - self._last_request_ts)
        if wait_for > 0:
            time.sleep(wait_for)

    def _sleep_backoff(self, attempt: int, exc: Exception) -> None:
        delay = self.policy.delay_for_attempt(attempt)
        if delay <= 0:
            return
        logging.warning(
            "Steam retry %s/%s after error: %s (sleep %.1fs)",
            attempt,
            self.policy.retries,
            exc,
            delay,
        )
        time.sleep(delay)
