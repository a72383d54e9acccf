from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from ..config import ConfigError, CrawlConfig
from ..engines.base import CrawlReport
from ..engines.catalog_engine import build_engine
from ..export.base import MemorySink
from ..pipeline.transform import TransformCompileError
from ..version import __version__

logger = logging.getLogger(__name__)

app = FastAPI(title="storefront_crawler API", version=__version__)


class CrawlRequest(BaseModel):
    start_urls: List[str]
    storefront_access_token: Optional[str] = None
    storefront_shop_domain: Optional[str] = None
    max_requests_per_crawl: Optional[int] = None
    batch_size: Optional[int] = None
    per_host_concurrency: Optional[int] = None
    updated_since: Optional[str] = None
    extend_output_function: Optional[str] = None
    custom_data: Optional[Dict[str, Any]] = None


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/crawl")
async def crawl(req: CrawlRequest) -> Dict[str, Any]:
    cfg = CrawlConfig.from_env()
    cfg.start_urls = req.start_urls or cfg.start_urls
    for name, value in req.model_dump(exclude={"start_urls"}, exclude_none=True).items():
        setattr(cfg, name, value)

    # Items are returned in the response instead of the configured exporter.
    sink = MemorySink()
    try:
        engine = build_engine(cfg, sink=sink)
    except (ConfigError, TransformCompileError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    report: CrawlReport = await engine.crawl()
    logger.info("API crawl finished: %s", report.to_dict())
    return {"report": report.to_dict(), "items": sink.items}
