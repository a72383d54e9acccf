from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from aiohttp import ClientSession

from .base import (
    CanonicalProduct,
    ProductImage,
    ProductLookupRequest,
    ProductOption,
    ProductVariant,
)
from ..utils.http import post_json
from ..utils.parsing import strip_gid

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = """
    id
    title
    descriptionHtml
    vendor
    productType
    tags
    featuredImage { id url }
    images(first: 100) { edges { node { id url } } }
    options { name values }
    createdAt
    updatedAt
    publishedAt
    variants(first: 100) { edges { node { id title sku availableForSale requiresShipping weight weightUnit barcode image { id url } price { amount currencyCode } selectedOptions { name value } } } }
"""


class BatchQueryError(RuntimeError):
    """The storefront rejected a batch as a whole (bad status or GraphQL errors)."""


@dataclass
class BatchQuery:
    query_text: str
    variable_bindings: Dict[str, str] = field(default_factory=dict)
    aliases: List[str] = field(default_factory=list)

    def payload(self) -> Dict[str, Any]:
        return {"query": self.query_text, "variables": self.variable_bindings}


def canonical_id(raw_id: Any) -> str:
    """Product id with the platform gid prefix stripped; stable across runs."""
    return strip_gid(raw_id)


def build_batch_query(requests: Sequence[ProductLookupRequest]) -> BatchQuery:
    """
    One aggregated query for ``requests``. Alias ``p{i}`` and variable
    ``$h{i}`` follow input order, so responses are demultiplexed by index.
    """
    bindings: Dict[str, str] = {}
    aliases: List[str] = []
    selections: List[str] = []
    for index, request in enumerate(requests):
        alias, variable = f"p{index}", f"h{index}"
        bindings[variable] = request.handle
        aliases.append(alias)
        selections.append(f"  {alias}: product(handle: ${variable}) {{{PRODUCT_FIELDS}  }}")
    signature = ", ".join(f"${name}: String!" for name in bindings)
    text = f"query({signature}) {{\n" + "\n".join(selections) + "\n}"
    return BatchQuery(query_text=text, variable_bindings=bindings, aliases=aliases)


def _edges(connection: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not connection:
        return []
    return [edge.get("node") or {} for edge in connection.get("edges") or []]


def _image(node: Optional[Dict[str, Any]]) -> Optional[ProductImage]:
    if not node or not node.get("url"):
        return None
    return ProductImage(id=node.get("id"), src=node["url"])


def normalize_product(fragment: Dict[str, Any]) -> CanonicalProduct:
    """Turn one GraphQL ``product`` fragment into a :class:`CanonicalProduct`."""
    featured = _image(fragment.get("featuredImage"))
    images = [img for img in (_image(node) for node in _edges(fragment.get("images"))) if img]
    if featured:
        images.append(featured)

    variants: List[ProductVariant] = []
    for node in _edges(fragment.get("variants")):
        price = node.get("price") or {}
        selected = {
            f"option{index}": option.get("value")
            for index, option in enumerate(node.get("selectedOptions") or [], start=1)
        }
        variants.append(
            ProductVariant(
                id=node.get("id"),
                title=node.get("title"),
                sku=node.get("sku"),
                available_for_sale=node.get("availableForSale"),
                requires_shipping=node.get("requiresShipping"),
                weight=node.get("weight"),
                weight_unit=node.get("weightUnit"),
                barcode=node.get("barcode"),
                price=price.get("amount"),
                currency_code=price.get("currencyCode"),
                image_id=(node.get("image") or {}).get("id"),
                selected_options=selected,
            )
        )

    tags = fragment.get("tags") or []
    return CanonicalProduct(
        id=fragment.get("id"),
        title=fragment["title"],
        description_html=fragment.get("descriptionHtml"),
        vendor=fragment.get("vendor"),
        product_type=fragment.get("productType"),
        tags=tuple(tags),
        image=featured,
        images=tuple(images),
        options=tuple(
            ProductOption(name=o.get("name"), values=tuple(o.get("values") or []))
            for o in fragment.get("options") or []
        ),
        variants=tuple(variants),
        created_at=fragment.get("createdAt"),
        updated_at=fragment.get("updatedAt"),
        published_at=fragment.get("publishedAt"),
    )


def demultiplex(
    data: Dict[str, Any],
    requests: Sequence[ProductLookupRequest],
) -> List[Tuple[ProductLookupRequest, Optional[CanonicalProduct]]]:
    """
    Pair each request with its product. A fragment without a title means
    the handle was not found; it maps to ``None``.
    """
    out: List[Tuple[ProductLookupRequest, Optional[CanonicalProduct]]] = []
    for index, request in enumerate(requests):
        fragment = data.get(f"p{index}")
        if not isinstance(fragment, dict) or not fragment.get("title"):
            logger.debug("Product %r not found on %s", request.handle, request.origin)
            out.append((request, None))
            continue
        out.append((request, normalize_product(fragment)))
    return out


class StorefrontClient:
    """
    Executes batched product lookups against the storefront GraphQL API.
    One POST per batch; the batch succeeds or fails as a unit.
    """

    def __init__(
        self,
        session: ClientSession,
        *,
        access_token: str,
        api_version: str = "2024-07",
        shop_domain: str = "",
        timeout: float = 30.0,
        retries: int = 1,
    ) -> None:
        self.session = session
        self.access_token = access_token
        self.api_version = api_version
        self.shop_domain = shop_domain.strip().rstrip("/")
        self.timeout = timeout
        self.retries = retries

    def endpoint(self, origin: str) -> str:
        api_origin = self.shop_domain or origin.rstrip("/")
        return f"{api_origin}/api/{self.api_version}/graphql.json"

    async def execute(self, origin: str, query: BatchQuery) -> Dict[str, Any]:
        endpoint = self.endpoint(origin)
        logger.debug("Sending batch of %d to %s", len(query.aliases), endpoint)
        logger.debug("Variables: %s", json.dumps(query.variable_bindings))

        status, body = await post_json(
            self.session,
            endpoint,
            query.payload(),
            headers={
                "Content-Type": "application/json",
                "X-Shopify-Storefront-Access-Token": self.access_token,
            },
            timeout=self.timeout,
            retries=self.retries,
        )
        if status != 200:
            raise BatchQueryError(f"GraphQL status {status} from {endpoint}")
        if not isinstance(body, dict):
            raise BatchQueryError(f"Malformed GraphQL response from {endpoint}")

        errors = body.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) else errors
            message = first.get("message") if isinstance(first, dict) else first
            raise BatchQueryError(f"GraphQL batch error: {message or 'Unknown'}")

        data = body.get("data")
        if not isinstance(data, dict):
            raise BatchQueryError(f"GraphQL response from {endpoint} has no data")
        return data

    async def fetch_batch(
        self,
        origin: str,
        requests: Sequence[ProductLookupRequest],
    ) -> List[Tuple[ProductLookupRequest, Optional[CanonicalProduct]]]:
        query = build_batch_query(requests)
        data = await self.execute(origin, query)
        return demultiplex(data, requests)
