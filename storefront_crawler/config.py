from __future__ import annotations

from dataclasses import dataclass, field, asdict, fields
from typing import List, Dict, Any
from pathlib import Path
import os
import json
import re

from .version import __version__, CONFIG_SCHEMA_VERSION


class ConfigError(ValueError):
    """Raised when the run configuration cannot be used to start a crawl."""


@dataclass
class CrawlConfig:
    """
    Canonical configuration object passed throughout the system.
    Keep it dataclass-only (no heavy deps) to stay upgrade-friendly.
    """
    schema_version: int = CONFIG_SCHEMA_VERSION
    # Sitemap URLs (or direct product URLs) to start from; str or {"url": ...}
    start_urls: List[Any] = field(default_factory=list)
    max_concurrency: int = 20
    max_requests_per_crawl: int = 0  # 0 = unlimited
    max_request_retries: int = 3
    debug_log: bool = False
    user_agent: str = f"storefront_crawler/{__version__}"

    # Storefront GraphQL API
    storefront_api_version: str = "2024-07"
    storefront_access_token: str = ""
    storefront_shop_domain: str = ""  # overrides each product URL origin when set
    request_timeout: float = 30.0
    updated_since: str = ""  # ISO date; older sitemap entries are skipped

    # Per-origin batching
    batch_size: int = 10
    flush_interval_ms: int = 300
    per_host_concurrency: int = 2

    # Sitemap walk
    sitemap_timeout: float = 10.0
    sitemap_retries: int = 5
    max_sitemap_fetches: int = 1000

    # Output
    buffer_writes: bool = True
    buffer_size: int = 100
    exporter: str = "storefront_crawler.export.json_exporter:JSONLinesExporter"
    output_path: str = "output/products.jsonl"
    state_dir: str = "storage/key_value_stores/default"

    # Operator-supplied transforms (single Python expressions)
    extend_scraper_function: str = ""
    extend_output_function: str = ""
    custom_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def flush_interval(self) -> float:
        return self.flush_interval_ms / 1000.0

    # ---------- Loaders ----------

    @classmethod
    def from_env(cls) -> "CrawlConfig":
        """
        Build config from environment variables (all optional).
        """
        urls = os.getenv("STOREFRONT_START_URLS", "")
        start_urls = [u.strip() for u in urls.split(",") if u.strip()]

        def _get(name: str, default: str) -> str:
            return os.getenv(name, default)

        def _flag(name: str, default: str) -> bool:
            return _get(name, default).strip().lower() in ("1", "true", "yes", "on")

        return cls(
            start_urls=start_urls,
            max_concurrency=int(_get("STOREFRONT_MAX_CONCURRENCY", "20")),
            max_requests_per_crawl=int(_get("STOREFRONT_MAX_REQUESTS_PER_CRAWL", "0")),
            max_request_retries=int(_get("STOREFRONT_MAX_REQUEST_RETRIES", "3")),
            debug_log=_flag("STOREFRONT_DEBUG_LOG", "false"),
            user_agent=_get("STOREFRONT_USER_AGENT", f"storefront_crawler/{__version__}"),
            storefront_api_version=_get("STOREFRONT_API_VERSION", "2024-07"),
            storefront_access_token=_get("STOREFRONT_ACCESS_TOKEN", ""),
            storefront_shop_domain=_get("STOREFRONT_SHOP_DOMAIN", ""),
            request_timeout=float(_get("STOREFRONT_REQUEST_TIMEOUT", "30.0")),
            updated_since=_get("STOREFRONT_UPDATED_SINCE", ""),
            batch_size=int(_get("STOREFRONT_BATCH_SIZE", "10")),
            flush_interval_ms=int(_get("STOREFRONT_FLUSH_INTERVAL_MS", "300")),
            per_host_concurrency=int(_get("STOREFRONT_PER_HOST_CONCURRENCY", "2")),
            sitemap_timeout=float(_get("STOREFRONT_SITEMAP_TIMEOUT", "10.0")),
            sitemap_retries=int(_get("STOREFRONT_SITEMAP_RETRIES", "5")),
            max_sitemap_fetches=int(_get("STOREFRONT_MAX_SITEMAP_FETCHES", "1000")),
            buffer_writes=_flag("STOREFRONT_BUFFER_WRITES", "true"),
            buffer_size=int(_get("STOREFRONT_BUFFER_SIZE", "100")),
            exporter=_get("STOREFRONT_EXPORTER", "storefront_crawler.export.json_exporter:JSONLinesExporter"),
            output_path=_get("STOREFRONT_OUTPUT_PATH", "output/products.jsonl"),
            state_dir=_get("STOREFRONT_STATE_DIR", "storage/key_value_stores/default"),
            extend_scraper_function=_get("STOREFRONT_EXTEND_SCRAPER_FUNCTION", ""),
            extend_output_function=_get("STOREFRONT_EXTEND_OUTPUT_FUNCTION", ""),
        )

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> "CrawlConfig":
        """
        Load configuration from a JSON file. Supports schema migration, so
        actor-style input files (camelCase keys) are accepted as well.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        data = migrate_config(data)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)

    # ---------- Validation ----------

    def validate(self) -> None:
        if not self.start_urls:
            raise ConfigError('Missing "start_urls"; provide at least one sitemap URL.')
        if not self.storefront_access_token.strip():
            raise ConfigError('Missing "storefront_access_token".')
        if self.max_concurrency <= 0:
            raise ConfigError("max_concurrency must be > 0")
        if self.max_requests_per_crawl < 0:
            raise ConfigError("max_requests_per_crawl must be >= 0")
        if self.batch_size <= 0:
            raise ConfigError("batch_size must be > 0")
        if self.per_host_concurrency <= 0:
            raise ConfigError("per_host_concurrency must be > 0")
        if self.flush_interval_ms < 0:
            raise ConfigError("flush_interval_ms must be >= 0")
        if self.buffer_size <= 0:
            raise ConfigError("buffer_size must be > 0")
        if self.max_sitemap_fetches <= 0:
            raise ConfigError("max_sitemap_fetches must be > 0")
        # Validate output path parent exists or is creatable
        parent = Path(self.output_path).parent
        parent.mkdir(parents=True, exist_ok=True)


_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def migrate_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Migrate config dict to the latest schema version.
    Keep this pure and additive. Add migrations here as you bump schema.
    """
    data = dict(raw)
    schema = data.get("schema_version", 1)

    if schema < 2:
        # v1: camelCase actor input. proxyConfig has no local counterpart.
        migrated: Dict[str, Any] = {}
        for key, value in data.items():
            if key in ("proxyConfig", "proxyConfiguration"):
                continue
            snake = _CAMEL.sub("_", key).lower()
            migrated[snake] = value
        data = migrated

    data["schema_version"] = CONFIG_SCHEMA_VERSION
    return data
