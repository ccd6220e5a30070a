"""
Website Scraper
----------------
Fetches one page with httpx and reduces it to readable text with
BeautifulSoup:

  - drops scripts, styles, navigation, footers, sidebars and ad containers
  - prefers <main>/<article>/[role=main] over the whole <body>
  - keeps one non-empty line per paragraph

`check_robots_txt()` is a separate precondition: callers run it before
scraping a site they have not crawled already.
"""
from __future__ import annotations

import ipaddress
from typing import Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from loguru import logger
from pydantic import BaseModel

from kb_ingest.errors import UpstreamError, ValidationError

DEFAULT_TIMEOUT_SECONDS = 10.0
ROBOTS_TIMEOUT_SECONDS = 5.0

_HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; KBIngest-Bot/1.0)"}

_NOISE_SELECTORS = "script, style, noscript, nav, footer, aside, .ad, .advertisement, .sidebar"
_MAIN_SELECTORS = "main, article, [role='main'], .content, .main-content"
_SPA_ROOT_IDS = {"root", "app", "__next", "__nuxt"}


class WebsiteParseResult(BaseModel):
    text: str
    url: str
    domain: str
    title: Optional[str] = None
    description: Optional[str] = None
    content_size: int
    is_dynamic_content: bool = False


# --- URL checks -----------------------------------------------------------------

def is_private_hostname(hostname: str) -> bool:
    """True for localhost, loopback and RFC 1918 addresses."""
    lower = hostname.lower().strip("[]")
    if lower == "localhost" or lower.endswith(".localhost"):
        return True
    try:
        addr = ipaddress.ip_address(lower)
    except ValueError:
        return False
    return addr.is_private or addr.is_loopback or addr.is_link_local


def validate_website_url(url: str) -> None:
    """Only public http(s) URLs may be scraped."""
    try:
        parsed = urlparse(url)
    except ValueError as exc:
        raise ValidationError(f"Invalid URL format: {exc}") from exc

    if parsed.scheme not in {"http", "https"}:
        raise ValidationError("URL must use HTTP or HTTPS protocol")
    if not parsed.hostname:
        raise ValidationError("Invalid URL format: missing hostname")
    if is_private_hostname(parsed.hostname):
        raise ValidationError("Cannot scrape local or internal network URLs")


# --- HTTP -------------------------------------------------------------------------

async def _fetch(url: str, timeout: float, client: Optional[httpx.AsyncClient]) -> httpx.Response:
    if client is not None:
        return await client.get(url, headers=_HEADERS, timeout=timeout)
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as own_client:
        return await own_client.get(url, headers=_HEADERS)


def robots_disallows_all(robots_txt: str) -> bool:
    """True when the wildcard user-agent group disallows the whole site."""
    in_wildcard_agent = False
    for raw_line in robots_txt.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        key, _, value = line.partition(":")
        key = key.strip().lower()
        value = value.strip()
        if key == "user-agent":
            in_wildcard_agent = value == "*"
        elif key == "disallow" and in_wildcard_agent and value == "/":
            return True
    return False


async def check_robots_txt(url: str, client: Optional[httpx.AsyncClient] = None) -> bool:
    """
    Return False only when robots.txt explicitly disallows everything.

    A missing or unreachable robots.txt counts as allowed, and so does a URL
    too malformed to locate one; URL validation rejects those separately.
    """
    try:
        parsed = urlparse(url if url.startswith("http") else f"https://{url}")
        robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
        response = await _fetch(robots_url, ROBOTS_TIMEOUT_SECONDS, client)
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        logger.warning(f"[Scraper] robots.txt unreachable for {url}: {exc}")
        return True

    if response.status_code != 200:
        return True
    return not robots_disallows_all(response.text)


# --- Scraping ---------------------------------------------------------------------

def _looks_dynamic(has_spa_root: bool, script_count: int, visible_chars: int) -> bool:
    """Client-rendered pages ship an empty mount point and little server text."""
    return visible_chars < 200 and (has_spa_root or script_count >= 3)


def html_to_result(html: str, url: str) -> WebsiteParseResult:
    soup = BeautifulSoup(html, "html.parser")
    domain = urlparse(url).hostname or ""

    title_tag = soup.find("title")
    h1 = soup.find("h1")
    title = (title_tag.get_text(strip=True) if title_tag else "") or (
        h1.get_text(strip=True) if h1 else ""
    )
    description = ""
    for attrs in ({"name": "description"}, {"property": "og:description"}):
        meta = soup.find("meta", attrs=attrs)
        if meta and meta.get("content"):
            description = meta["content"].strip()
            break

    has_spa_root = any(soup.find(id=root_id) for root_id in _SPA_ROOT_IDS)
    script_count = len(soup.find_all("script"))
    for tag in soup.select(_NOISE_SELECTORS):
        tag.decompose()

    main = soup.select_one(_MAIN_SELECTORS)
    container = main if main is not None else (soup.body or soup)
    lines = [line.strip() for line in container.get_text("\n").splitlines()]
    content = "\n\n".join(line for line in lines if line)

    text = f"# Website: {title or domain}\n\n**URL:** {url}\n\n---\n\n{content}"
    return WebsiteParseResult(
        text=text,
        url=url,
        domain=domain,
        title=title or None,
        description=description or None,
        content_size=len(content),
        is_dynamic_content=_looks_dynamic(has_spa_root, script_count, len(content)),
    )


async def scrape_website(
    url: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    client: Optional[httpx.AsyncClient] = None,
) -> WebsiteParseResult:
    """Download `url` and extract its readable text."""
    try:
        response = await _fetch(url, timeout, client)
    except httpx.HTTPError as exc:
        raise UpstreamError(f"Failed to scrape website: {exc}", cause=exc) from exc

    if response.status_code >= 400:
        raise UpstreamError(
            f"Failed to scrape website: HTTP {response.status_code}: {response.reason_phrase}"
        )

    result = html_to_result(response.text, url)
    logger.debug(
        f"[Scraper] {url} -> {result.content_size:,} chars"
        f"{' (dynamic)' if result.is_dynamic_content else ''}"
    )
    return result
