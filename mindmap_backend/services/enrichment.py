"""
Reference Enrichment
====================
Fetches short excerpts about a topic from a fixed set of public reference
sources so the coverage stage can ground its additions.

  • Wikipedia summary + related pages for every topic
  • MDN search only for technology topics (keyword heuristic)
  • Hostname allow-list, URL de-duplication, character budget, 5 snippets max
  • Never raises: timeouts and HTTP errors degrade to fewer snippets
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlsplit

import httpx
from pydantic import BaseModel

from mindmap_backend.core.config import settings
from mindmap_backend.schemas.outline import EnrichmentSnippet

logger = logging.getLogger(__name__)

MAX_SNIPPETS = 5
MAX_EXCERPT_CHARS = 400

ALLOWED_HOSTS = (
    "wikipedia.org",
    "wikimedia.org",
    "developer.mozilla.org",
)

TECH_KEYWORDS = (
    "javascript", "typescript", "python", "html", "css", "http", "api",
    "react", "node", "browser", "dom", "web", "programming", "software",
    "sql", "database", "algorithm", "frontend", "backend", "json",
)

WIKI_SUMMARY_URL = "https://en.wikipedia.org/api/rest_v1/page/summary/{title}"
WIKI_RELATED_URL = "https://en.wikipedia.org/api/rest_v1/page/related/{title}"
MDN_SEARCH_URL = "https://developer.mozilla.org/api/v1/search"
MDN_BASE_URL = "https://developer.mozilla.org"


class EnrichmentResult(BaseModel):
    snippets: List[EnrichmentSnippet] = []
    context: str = ""
    degraded: bool = False


# ── Pure helpers ─────────────────────────────────────────────────────────────

def is_allowed_url(url: str) -> bool:
    """Exact or subdomain match against ``ALLOWED_HOSTS`` over http(s)."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return False
    host = parts.hostname.lower()
    return any(host == allowed or host.endswith("." + allowed) for allowed in ALLOWED_HOSTS)


def is_tech_topic(topic: str) -> bool:
    words = set(re.findall(r"[a-z0-9+#]+", topic.lower()))
    return any(keyword in words for keyword in TECH_KEYWORDS)


def _clean_excerpt(text: str) -> str:
    text = re.sub(r"\s+", " ", text or "").strip()
    if len(text) > MAX_EXCERPT_CHARS:
        text = text[:MAX_EXCERPT_CHARS - 1].rstrip() + "…"
    return text


def format_context(snippets: List[EnrichmentSnippet]) -> str:
    blocks = [
        f'[{i}] {s.title}\nSource: {s.url}\n"{s.excerpt}"'
        for i, s in enumerate(snippets, start=1)
    ]
    return "\n\n".join(blocks)


def select_snippets(
    candidates: List[EnrichmentSnippet],
    budget: int,
    max_snippets: int = MAX_SNIPPETS,
) -> Tuple[List[EnrichmentSnippet], str]:
    """
    Keep candidates in discovery order: allow-listed, unique by URL, and only
    while the formatted context still fits ``budget`` characters.
    """
    selected: List[EnrichmentSnippet] = []
    seen: set = set()
    context = ""

    for candidate in candidates:
        if len(selected) >= max_snippets:
            break
        if candidate.url in seen or not is_allowed_url(candidate.url):
            continue
        seen.add(candidate.url)
        trial = format_context(selected + [candidate])
        if len(trial) > budget:
            break
        selected.append(candidate)
        context = trial

    return selected, context


# ── Fetcher ──────────────────────────────────────────────────────────────────

class EnrichmentFetcher:
    """Queries the reference sources for one topic per call; no caching."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self._timeout = timeout or settings.ENRICHMENT_TIMEOUT_SECONDS

    async def fetch(self, topic: str, budget: Optional[int] = None) -> EnrichmentResult:
        budget = settings.ENRICHMENT_CHAR_BUDGET if budget is None else budget
        if self._client is not None:
            return await self._fetch_with(self._client, topic, budget)

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers={"User-Agent": settings.ENRICHMENT_USER_AGENT},
            follow_redirects=True,
        ) as client:
            return await self._fetch_with(client, topic, budget)

    async def _fetch_with(self, client: httpx.AsyncClient, topic: str, budget: int) -> EnrichmentResult:
        title = quote(topic.strip().replace(" ", "_"), safe="")
        candidates: List[EnrichmentSnippet] = []
        degraded = False

        summary, failed = await self._get_json(client, WIKI_SUMMARY_URL.format(title=title))
        degraded |= failed
        candidates.extend(self._from_wiki_pages([summary] if summary else []))

        related, failed = await self._get_json(client, WIKI_RELATED_URL.format(title=title))
        degraded |= failed
        if related:
            candidates.extend(self._from_wiki_pages(related.get("pages") or []))

        if is_tech_topic(topic):
            mdn, failed = await self._get_json(
                client, MDN_SEARCH_URL, params={"q": topic, "locale": "en-US"}
            )
            degraded |= failed
            if mdn:
                candidates.extend(self._from_mdn(mdn.get("documents") or []))

        snippets, context = select_snippets(candidates, budget)
        logger.info(
            f"[ENRICH] '{topic}': {len(candidates)} candidates → {len(snippets)} snippets "
            f"({len(context)}/{budget} chars){' [degraded]' if degraded else ''}"
        )
        return EnrichmentResult(snippets=snippets, context=context, degraded=degraded)

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Tuple[Optional[Dict[str, Any]], bool]:
        """Return ``(payload, failed)``. A 404 is an empty answer, not a failure."""
        try:
            resp = await client.get(url, params=params, timeout=self._timeout)
        except httpx.HTTPError as e:
            logger.warning(f"[ENRICH] {url} failed: {type(e).__name__}: {e}")
            return None, True

        if resp.status_code == 404:
            return None, False
        if not resp.is_success:
            logger.warning(f"[ENRICH] {url} returned HTTP {resp.status_code}")
            return None, True

        try:
            payload = resp.json()
        except ValueError:
            logger.warning(f"[ENRICH] {url} returned a non-JSON body")
            return None, True
        return (payload if isinstance(payload, dict) else None), False

    @staticmethod
    def _from_wiki_pages(pages: List[Dict[str, Any]]) -> List[EnrichmentSnippet]:
        snippets = []
        for page in pages:
            if not isinstance(page, dict) or page.get("type") == "disambiguation":
                continue
            url = ((page.get("content_urls") or {}).get("desktop") or {}).get("page", "")
            excerpt = _clean_excerpt(page.get("extract", ""))
            title = page.get("title") or page.get("displaytitle") or ""
            if url and excerpt and title:
                snippets.append(EnrichmentSnippet(title=f"Wikipedia: {title}", url=url, excerpt=excerpt))
        return snippets

    @staticmethod
    def _from_mdn(documents: List[Dict[str, Any]]) -> List[EnrichmentSnippet]:
        snippets = []
        for doc in documents:
            if not isinstance(doc, dict):
                continue
            path = doc.get("mdn_url") or ""
            excerpt = _clean_excerpt(doc.get("summary", ""))
            if path and excerpt and doc.get("title"):
                snippets.append(
                    EnrichmentSnippet(title=f"MDN: {doc['title']}", url=MDN_BASE_URL + path, excerpt=excerpt)
                )
        return snippets
