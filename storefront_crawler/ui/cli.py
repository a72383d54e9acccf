from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import List

from ..config import ConfigError, CrawlConfig
from ..engines.base import CrawlReport
from ..engines.catalog_engine import build_engine
from ..pipeline.transform import TransformCompileError
from ..utils.logging import setup_logging


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Storefront catalog crawler CLI")
    p.add_argument("urls", nargs="*", help="Sitemap URLs (space-separated)")
    p.add_argument("--config", type=str, help="Path to config JSON (snake_case or actor input)", default=None)
    p.add_argument("--access-token", type=str, default=None, help="Storefront API access token")
    p.add_argument("--shop-domain", type=str, default=None,
                   help="Send all GraphQL queries to this origin instead of each product URL origin")
    p.add_argument("--api-version", type=str, default=None, help="Storefront API version, e.g. 2024-07")
    p.add_argument("--max-concurrency", type=int, default=None, help="Sitemap fetch concurrency")
    p.add_argument("--max-requests", type=int, default=None, help="Max product requests per crawl (0 = unlimited)")
    p.add_argument("--batch-size", type=int, default=None, help="Product handles per GraphQL query")
    p.add_argument("--flush-interval-ms", type=int, default=None, help="Debounce before sending a partial batch")
    p.add_argument("--per-host-concurrency", type=int, default=None, help="In-flight batches per origin")
    p.add_argument("--updated-since", type=str, default=None, help="Skip sitemap entries modified before this date")
    p.add_argument("--exporter", type=str, default=None, help="Exporter dotted path (module:ClassName)")
    p.add_argument("--output", type=str, default=None, help="Output file path")
    p.add_argument("--state-dir", type=str, default=None, help="Directory for persisted run state")
    p.add_argument("--log-level", type=str, default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
    p.add_argument("--debug", action="store_true", help="Debug logging (same as debug_log)")
    p.add_argument("--serve", action="store_true", help="Run REST API server instead of CLI crawl")
    p.add_argument("--host", type=str, default="127.0.0.1", help="API host (when --serve)")
    p.add_argument("--port", type=int, default=8000, help="API port (when --serve)")
    return p


_OVERRIDES = {
    "access_token": "storefront_access_token",
    "shop_domain": "storefront_shop_domain",
    "api_version": "storefront_api_version",
    "max_concurrency": "max_concurrency",
    "max_requests": "max_requests_per_crawl",
    "batch_size": "batch_size",
    "flush_interval_ms": "flush_interval_ms",
    "per_host_concurrency": "per_host_concurrency",
    "updated_since": "updated_since",
    "exporter": "exporter",
    "output": "output_path",
    "state_dir": "state_dir",
}


def load_config(args: argparse.Namespace) -> CrawlConfig:
    if args.config:
        cfg = CrawlConfig.from_file(args.config)
    else:
        cfg = CrawlConfig.from_env()

    if args.urls:
        cfg.start_urls = list(args.urls)
    for arg_name, field_name in _OVERRIDES.items():
        value = getattr(args, arg_name)
        if value is not None:
            setattr(cfg, field_name, value)
    if args.debug:
        cfg.debug_log = True

    cfg.validate()
    return cfg


def run_server(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("storefront_crawler.apis.app:app", host=host, port=port)


def run_cli(argv: List[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.log_level, debug=args.debug)
    log = logging.getLogger(__name__)

    if args.serve:
        run_server(args.host, args.port)
        return 0

    try:
        cfg = load_config(args)
        if cfg.debug_log:
            logging.getLogger().setLevel(logging.DEBUG)
        engine = build_engine(cfg)
    except (ConfigError, TransformCompileError) as exc:
        log.error("%s", exc)
        return 2

    report: CrawlReport = asyncio.run(engine.crawl())

    log.info("Report: %s | Output: %s", json.dumps(report.to_dict()), cfg.output_path)
    return 0
