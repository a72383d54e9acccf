from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..utils.parsing import strip_gid


@dataclass(frozen=True)
class SitemapEntry:
    """One ``<url>`` or ``<sitemap>`` entry read from a sitemap document."""

    url: str
    last_modified: Optional[str] = None
    is_sitemap_index: bool = False


@dataclass(frozen=True)
class ProductLookupRequest:
    origin: str
    handle: str
    source_url: str


@dataclass(frozen=True)
class ProductImage:
    id: Optional[str]
    src: str


@dataclass(frozen=True)
class ProductOption:
    name: str
    values: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ProductVariant:
    id: str
    title: Optional[str] = None
    sku: Optional[str] = None
    available_for_sale: Optional[bool] = None
    requires_shipping: Optional[bool] = None
    weight: Optional[float] = None
    weight_unit: Optional[str] = None
    barcode: Optional[str] = None
    price: Optional[str] = None
    currency_code: Optional[str] = None
    image_id: Optional[str] = None
    # option1, option2, ... in the product's option order
    selected_options: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "sku": self.sku,
            "available_for_sale": self.available_for_sale,
            "requires_shipping": self.requires_shipping,
            "weight": self.weight,
            "weight_unit": self.weight_unit,
            "barcode": self.barcode,
            "price": self.price,
            "currency_code": self.currency_code,
            "image_id": self.image_id,
        }
        data.update(self.selected_options)
        return data


@dataclass(frozen=True)
class CanonicalProduct:
    """Normalized product aggregate built from one storefront response fragment."""

    id: str
    title: str
    description_html: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: Tuple[str, ...] = ()
    image: Optional[ProductImage] = None
    images: Tuple[ProductImage, ...] = ()
    options: Tuple[ProductOption, ...] = ()
    variants: Tuple[ProductVariant, ...] = ()
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    published_at: Optional[str] = None

    @property
    def canonical_id(self) -> str:
        return strip_gid(self.id)

    def images_by_id(self) -> Dict[str, ProductImage]:
        out: Dict[str, ProductImage] = {}
        for image in (*self.images, self.image):
            if image and image.id:
                out[strip_gid(image.id)] = image
        return out

    def variants_by_id(self) -> Dict[str, ProductVariant]:
        return {strip_gid(v.id): v for v in self.variants}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description_html": self.description_html,
            "vendor": self.vendor,
            "product_type": self.product_type,
            "tags": list(self.tags),
            "image": {"id": self.image.id, "src": self.image.src} if self.image else None,
            "images": [{"id": i.id, "src": i.src} for i in self.images],
            "options": [{"name": o.name, "values": list(o.values)} for o in self.options],
            "variants": [v.to_dict() for v in self.variants],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "published_at": self.published_at,
        }


def record_data(product: CanonicalProduct, url: str) -> Dict[str, Any]:
    """
    Raw input handed to the output pipeline for one resolved product.
    Only plain containers, so operator transforms can index into it.
    """
    images = product.images_by_id()
    return {
        "product": product.to_dict(),
        "url": url,
        "images": {key: image.src for key, image in images.items()},
        "variants": {key: v.to_dict() for key, v in product.variants_by_id().items()},
        "images_without_variants": [i.src for i in product.images if i.src],
    }


def failed_record(url: str, error: Exception | str) -> Dict[str, Any]:
    return {"#failed": {"url": url, "error": f"{error}"}}


__all__: List[str] = [
    "SitemapEntry",
    "ProductLookupRequest",
    "ProductImage",
    "ProductOption",
    "ProductVariant",
    "CanonicalProduct",
    "record_data",
    "failed_record",
]
