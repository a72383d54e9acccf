from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..utils.parsing import (
    pick_first_available,
    strip_gid,
    strip_html,
    strip_url_query,
    to_snake_case,
    unique_defined,
)

# Promoted to top-level output fields, or intentionally not exported.
_RESERVED_PROPS = {"color", "size", "material", "created_at", "updated_at", "published_at"}


def derive_variant_attributes(variant: Dict[str, Any], product: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Human readable variant name ("Color: Red / Size: M") and the option
    values keyed by snake_cased option name.
    """
    options = product.get("options") or []
    if options and re.search(r"(Default|title)", f"{options[0].get('name')}", re.IGNORECASE):
        return "Default", {}

    names: List[str] = []
    props: Dict[str, Any] = {}
    for index, option in enumerate(options, start=1):
        prop = f"option{index}"
        if prop in variant:
            props[to_snake_case(option["name"])] = variant[prop]
            names.append(f"{option['name']}: {variant[prop]}")
    return " / ".join(names), props


def _availability(variant: Dict[str, Any]) -> str:
    stock = pick_first_available([variant], ["inventory_quantity", "inventoryQuantity"])
    try:
        stock_count = int(stock) if stock is not None else 0
    except (TypeError, ValueError):
        stock_count = 0
    if stock_count:
        return "in stock" if stock_count > 0 else "out of stock"
    available = pick_first_available([variant], ["available_for_sale", "availableForSale"])
    return "in stock" if available else "out of stock"


def _price(variant: Dict[str, Any]) -> Optional[float]:
    try:
        price = float(variant.get("price") or 0)
    except (TypeError, ValueError):
        return None
    return price or None


def map_to_dataset(data: Dict[str, Any], ctx: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """
    Map one resolved product (see ``record_data``) to the flat output record.
    Dates and product_type are intentionally left out of the output.
    """
    product = data.get("product") if data else None
    if not product:
        return None

    variants: List[Dict[str, Any]] = list(product.get("variants") or [])
    primary: Dict[str, Any] = variants[0] if variants else {}
    images: Dict[str, str] = data.get("images") or {}

    name, props = derive_variant_attributes(primary, product)
    description = pick_first_available([product], ["body_html", "description_html", "description"])
    weight_unit = pick_first_available([primary], ["weight_unit", "weightUnit"])
    display_name = pick_first_available([primary], ["display_name", "displayName"])

    variant_image = images.get(strip_gid(primary["image_id"])) if primary.get("image_id") else None
    featured = (product.get("image") or {}).get("src")
    image_urls = [variant_image, *(data.get("images_without_variants") or []), featured]

    tags = product.get("tags") or []
    if isinstance(tags, str):
        tags = re.split(r",\s*", tags)

    sku = primary.get("sku") or (strip_gid(primary["id"]) if primary.get("id") else "")

    return {
        "url": data.get("url"),
        "color": props.get("color"),
        "size": props.get("size"),
        "material": props.get("material"),
        "display_name": display_name,
        "title": product.get("title"),
        "id": strip_gid(product.get("id")),
        "description": strip_html(description),
        "sku": f"{sku}",
        "availability": _availability(primary),
        "price": _price(primary),
        "currency": primary.get("currency_code") or "USD",
        "images_urls": unique_defined(strip_url_query(u) for u in image_urls if u),
        "brand": product.get("vendor"),
        "video_urls": [],
        "additional": {
            "variant_attributes": name,
            "variant_title": primary.get("title"),
            "scraped_at": datetime.now(timezone.utc).isoformat(),
            "barcode": primary.get("barcode") or None,
            "taxcode": primary.get("taxcode") or None,
            "tags": unique_defined(tags),
            "weight": f"{primary['weight']} {weight_unit}" if primary.get("weight") else None,
            "variants": [
                {
                    "id": v.get("id"),
                    "sku": v.get("sku"),
                    "title": v.get("title"),
                    "price": v.get("price"),
                    "image_id": v.get("image_id"),
                }
                for v in variants
            ],
            **{k: v for k, v in props.items() if k not in _RESERVED_PROPS},
        },
    }
