"""
Shared fixtures: an in-memory catalog probe and a settable clock.
"""

from datetime import datetime, timedelta
from pathlib import Path
import sys

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from hcup_mapper.exceptions import CatalogUnreachable
from hcup_mapper.probe import CatalogProbe

BASE_URL = "https://hcup-us.ahrq.gov/toolssoftware/ccsr/"


class FakeProbe(CatalogProbe):
    """Catalog probe backed by dictionaries; records every call."""

    def __init__(self, existing=(), pages=None, files=None):
        self.existing = set(existing)
        self.pages = dict(pages or {})
        self.files = dict(files or {})
        self.heads = []
        self.gets = []
        self.downloads = []

    def exists(self, url):
        self.heads.append(url)
        return url in self.existing or url in self.files

    def fetch_text(self, url):
        self.gets.append(url)
        return self.pages.get(url)

    def fetch_bytes(self, url, timeout=None):
        self.downloads.append(url)
        if url not in self.files:
            raise CatalogUnreachable(f"Failed to download {url}: 404")
        return self.files[url]


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 15, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    """Clock fixed at 2026-03-15 noon"""
    return FakeClock()


@pytest.fixture
def make_probe():
    """Factory for FakeProbe instances"""
    return FakeProbe
