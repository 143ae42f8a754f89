"""DuckDuckGo web search tool.

Returns a plain-text digest of the top results. Never raises: lookup failures
come back as an ``Error performing web search: ...`` string so the reasoning
pass can tell the user what went wrong.

Integrated with production infrastructure: rate limiting and retry.
"""

import re
import time
from html import unescape
from urllib.parse import parse_qs, unquote, urljoin, urlparse

import httpx
import structlog
from bs4 import BeautifulSoup

from streamchat.core.config import settings
from streamchat.core.metrics import api_call_duration_seconds, api_calls_total
from streamchat.core.rate_limiter import rate_limited_call, web_search_limiter
from streamchat.core.retry import retry_with_backoff

logger = structlog.get_logger(__name__)

_DDG_HTML_URL = "https://html.duckduckgo.com/html/"
_HEADERS = {
    "user-agent": "Mozilla/5.0 (compatible; streamchat/0.1)",
    "accept": "text/html",
}
NO_RESULTS_TEXT = "No relevant information found for the query."


def _normalize_ddg_href(href: str) -> str:
    if not href:
        return ""
    # DuckDuckGo HTML returns relative /l/?uddg=... redirect links
    href = urljoin("https://duckduckgo.com", href.strip())
    uddg = parse_qs(urlparse(href).query or "").get("uddg", [None])[0]
    if uddg:
        return unquote(unescape(uddg))
    return href


def _domain(url: str) -> str:
    host = urlparse(url).netloc
    return host[4:] if host.startswith("www.") else host


def parse_results(html: str, max_results: int) -> list[dict[str, str]]:
    """Extract ``{title, url, snippet, domain}`` dicts from a DuckDuckGo HTML page."""
    soup = BeautifulSoup(html or "", "html.parser")
    results: list[dict[str, str]] = []
    seen: set[str] = set()

    for anchor in soup.select("a.result__a"):
        url = _normalize_ddg_href(str(anchor.get("href") or ""))
        title = anchor.get_text(" ", strip=True)
        if not url or not title or url in seen:
            continue
        # Skip sponsored results, which route through the ad redirect
        if "duckduckgo.com/y.js" in url:
            continue
        seen.add(url)

        snippet = ""
        container = anchor.find_parent(class_=re.compile(r"\bresult\b"))
        if container is not None:
            node = container.select_one(".result__snippet")
            if node is not None:
                snippet = node.get_text(" ", strip=True)

        results.append({"title": title, "url": url, "snippet": snippet, "domain": _domain(url)})
        if len(results) >= max_results:
            break

    return results


def format_digest(query: str, results: list[dict[str, str]]) -> str:
    if not results:
        return NO_RESULTS_TEXT

    lines = [f"Here are some useful resources about {query}:", ""]
    for item in results:
        heading = f"{item['title']} ({item['domain']})"
        lines.append(f"{heading}: {item['snippet']}" if item["snippet"] else heading)
        lines.append(item["url"])
        lines.append("")
    lines.append(
        f"These links provide comprehensive information about {query}. "
        "Click any URL to learn more."
    )
    return "\n".join(lines)


async def _fetch_html(query: str) -> str:
    async with httpx.AsyncClient(
        follow_redirects=True, timeout=httpx.Timeout(settings.WEB_SEARCH_TIMEOUT)
    ) as client:
        response = await client.get(_DDG_HTML_URL, params={"q": query}, headers=_HEADERS)
        response.raise_for_status()
        return response.text


async def _search_html(query: str) -> str | None:
    """Rate-limited, retried fetch. Returns None once retries are exhausted."""
    return await retry_with_backoff(
        rate_limited_call,
        web_search_limiter,
        "duckduckgo",
        _fetch_html,
        query,
    )


async def web_search(query: str) -> str:
    """
    Search the web and return the top results with titles, snippets and URLs.

    Use this for current events, facts about companies, people or products,
    and anything that may have changed recently.

    Args:
        query: The search query.
    """
    query = (query or "").strip()
    if not query:
        return "Error performing web search: query must not be empty"

    start = time.monotonic()
    try:
        html = await _search_html(query)
        if html is None:
            api_calls_total.labels(api_name="duckduckgo", status="failure").inc()
            return "Error performing web search: search service unavailable"

        results = parse_results(html, settings.WEB_SEARCH_MAX_RESULTS)
    except Exception as e:
        api_calls_total.labels(api_name="duckduckgo", status="failure").inc()
        logger.exception("web_search.failed", query_preview=query[:80])
        return f"Error performing web search: {e}"
    finally:
        api_call_duration_seconds.labels(api_name="duckduckgo").observe(time.monotonic() - start)

    status = "success" if results else "empty"
    api_calls_total.labels(api_name="duckduckgo", status=status).inc()
    logger.info("web_search.success", query_preview=query[:80], results=len(results))
    return format_digest(query, results)
