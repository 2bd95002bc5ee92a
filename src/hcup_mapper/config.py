"""
Configuration loader for hcup_mapper.

Handles loading settings from YAML files, layered over built-in defaults.
"""

import copy
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

import yaml

logger = logging.getLogger(__name__)


# Default configuration template
DEFAULT_CONFIG = """
# hcup-mapper configuration
#
# Where HCUP resources live and how patiently to wait for them.

# Directory holding CCSR ZIP files
base_url: "https://hcup-us.ahrq.gov/toolssoftware/ccsr/"

# Pages scraped for version links when direct probing finds nothing
catalog_pages:
  - "https://hcup-us.ahrq.gov/toolssoftware/ccsr/ccs_refined.jsp"
  - "https://hcup-us.ahrq.gov/toolssoftware/ccsr/"
  - "https://hcup-us.ahrq.gov/toolssoftware/ccsr/ccsr_archive.jsp"

# Summary Trend Tables
trend_tables_url: "https://hcup-us.ahrq.gov/reports/trendtables/"
trend_tables_page: "https://hcup-us.ahrq.gov/reports/trendtables/summarytrendtables.jsp"

user_agent: "hcup-mapper Python package"

# Seconds
timeouts:
  head: 5
  page: 10
  download: 60
  archive: 300

cache:
  # null -> <system temp dir>/hcup_mapper_cache
  dir: null
  latest_ttl_hours: 6
  versions_ttl_hours: 24
"""

DEFAULT_SETTINGS: Dict[str, Any] = yaml.safe_load(DEFAULT_CONFIG)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Keys missing from the file fall back to DEFAULT_SETTINGS.

    Args:
        config_path: Path to YAML config file; None returns the defaults

    Returns:
        Configuration dictionary
    """
    if config_path is None:
        return copy.deepcopy(DEFAULT_SETTINGS)

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    logger.info(f"Loaded configuration from {config_path}")
    return _merge(DEFAULT_SETTINGS, config)


def create_default_config(output_path: Union[str, Path]) -> bool:
    """
    Create a default configuration file.

    Args:
        output_path: Path where to save the config file

    Returns:
        True if the file was written, False if it already existed
    """
    output_path = Path(output_path)

    if output_path.exists():
        logger.warning(f"Config file already exists: {output_path}")
        return False

    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        f.write(DEFAULT_CONFIG)

    logger.info(f"Created default config at {output_path}")
    return True


@dataclass(frozen=True)
class ResolverSettings:
    """Typed view over the configuration keys the resolver and probe use."""

    base_url: str = DEFAULT_SETTINGS["base_url"]
    catalog_pages: List[str] = field(
        default_factory=lambda: list(DEFAULT_SETTINGS["catalog_pages"])
    )
    trend_tables_url: str = DEFAULT_SETTINGS["trend_tables_url"]
    trend_tables_page: str = DEFAULT_SETTINGS["trend_tables_page"]
    user_agent: str = DEFAULT_SETTINGS["user_agent"]
    head_timeout: float = DEFAULT_SETTINGS["timeouts"]["head"]
    page_timeout: float = DEFAULT_SETTINGS["timeouts"]["page"]
    download_timeout: float = DEFAULT_SETTINGS["timeouts"]["download"]
    archive_timeout: float = DEFAULT_SETTINGS["timeouts"]["archive"]
    cache_dir: Optional[str] = None
    latest_ttl_hours: float = DEFAULT_SETTINGS["cache"]["latest_ttl_hours"]
    versions_ttl_hours: float = DEFAULT_SETTINGS["cache"]["versions_ttl_hours"]

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "ResolverSettings":
        cfg = _merge(DEFAULT_SETTINGS, config or {})
        timeouts = cfg["timeouts"]
        cache = cfg["cache"]
        return cls(
            base_url=cfg["base_url"],
            catalog_pages=list(cfg["catalog_pages"]),
            trend_tables_url=cfg["trend_tables_url"],
            trend_tables_page=cfg["trend_tables_page"],
            user_agent=cfg["user_agent"],
            head_timeout=float(timeouts["head"]),
            page_timeout=float(timeouts["page"]),
            download_timeout=float(timeouts["download"]),
            archive_timeout=float(timeouts["archive"]),
            cache_dir=cache.get("dir"),
            latest_ttl_hours=float(cache["latest_ttl_hours"]),
            versions_ttl_hours=float(cache["versions_ttl_hours"]),
        )

    @property
    def cache_path(self) -> Path:
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return Path(tempfile.gettempdir()) / "hcup_mapper_cache"
