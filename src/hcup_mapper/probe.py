"""
Catalog probing over HTTP.

A CatalogProbe answers two questions about the HCUP website: does this URL
exist (HEAD), and what is the text of this page (GET). Network errors and
timeouts are reported as reachability failures (False / None) rather than
raised, so callers can fall through to the next discovery tier.
"""

import re
from typing import List, Optional, Union
import logging

import requests
from bs4 import BeautifulSoup

from .exceptions import CatalogUnreachable
from .versions import Family, VersionTag, parse_family

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "hcup-mapper Python package"

# Status codes treated as "artifact exists"
EXISTS_STATUS = (200, 301, 302, 303)


class CatalogProbe:
    """Interface for existence checks and page fetches."""

    def exists(self, url: str) -> bool:
        raise NotImplementedError

    def fetch_text(self, url: str) -> Optional[str]:
        raise NotImplementedError

    def fetch_bytes(self, url: str, timeout: Optional[float] = None) -> bytes:
        raise NotImplementedError


class HttpCatalogProbe(CatalogProbe):
    """
    requests-backed probe with short per-request timeouts.

    Args:
        session: Optional requests.Session to reuse connections
        user_agent: User-Agent header sent with every request
        head_timeout: Seconds allowed for existence checks
        page_timeout: Seconds allowed for catalog page fetches
        download_timeout: Seconds allowed for artifact downloads
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        head_timeout: float = 5,
        page_timeout: float = 10,
        download_timeout: float = 60
    ):
        self.session = session or requests.Session()
        self.user_agent = user_agent
        self.head_timeout = head_timeout
        self.page_timeout = page_timeout
        self.download_timeout = download_timeout

    @property
    def headers(self) -> dict:
        return {"User-Agent": self.user_agent}

    def exists(self, url: str) -> bool:
        try:
            resp = self.session.head(
                url,
                headers=self.headers,
                timeout=self.head_timeout,
                allow_redirects=True
            )
        except requests.RequestException as e:
            logger.debug(f"HEAD {url} failed: {e}")
            return False
        found = resp.status_code in EXISTS_STATUS
        logger.debug(f"HEAD {url} -> {resp.status_code}")
        return found

    def fetch_text(self, url: str) -> Optional[str]:
        try:
            resp = self.session.get(url, headers=self.headers, timeout=self.page_timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.debug(f"GET {url} failed: {e}")
            return None
        return resp.text

    def fetch_bytes(self, url: str, timeout: Optional[float] = None) -> bytes:
        """
        Download an artifact.

        Raises:
            CatalogUnreachable: on any network error or HTTP error status
        """
        logger.info(f"Downloading from: {url}")
        try:
            resp = self.session.get(
                url,
                headers=self.headers,
                timeout=timeout or self.download_timeout
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise CatalogUnreachable(f"Failed to download {url}: {e}") from e
        return resp.content


def page_contents(html: str) -> List[str]:
    """
    Link targets plus the page's visible text, as a list of strings.

    Unparseable markup yields whatever BeautifulSoup can recover; an empty
    page yields an empty list.
    """
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    hrefs = [a["href"] for a in soup.find_all("a", href=True)]
    text = " ".join(s.strip() for s in soup.stripped_strings)
    contents = list(hrefs)
    if text:
        contents.append(text)
    return contents


def extract_versions(html: str, family: Union[str, Family]) -> List[VersionTag]:
    """
    Find version tokens that follow the family prefix in a catalog page.

    Both 'v2026.1' and 'v2026-1' spellings are recognized; the result is
    deduplicated, in order of first appearance.

    Examples:
        >>> html = '<a href="DXCCSR-v2026-1.zip">x</a> DXCCSR v2025.1'
        >>> [str(v) for v in extract_versions(html, "diagnosis")]
        ['v2026.1', 'v2025.1']
    """
    fam = parse_family(family)
    # Bounded gap: in flattened page text a prefix must not reach the
    # other family's version token.
    pattern = re.compile(
        rf'{fam.prefix}.{{0,40}}?v(\d{{4}})[-.](\d+)',
        flags=re.IGNORECASE
    )
    seen = {}
    for content in page_contents(html):
        for match in pattern.finditer(content):
            key = (int(match.group(1)), int(match.group(2)))
            if key not in seen:
                seen[key] = VersionTag(key[0], key[1], fam)
    return list(seen.values())
