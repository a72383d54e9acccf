from datetime import timezone

import pytest

from storefront_crawler.adapters.base import record_data
from storefront_crawler.adapters.records import derive_variant_attributes, map_to_dataset
from storefront_crawler.adapters.shopify import normalize_product
from storefront_crawler.utils.parsing import (
    extract_handle,
    iterate_start_urls,
    origin_of,
    parse_iso_date_safe,
    strip_html,
    to_snake_case,
)

from conftest import product_fragment


def test_extract_handle_and_origin():
    url = "https://shop.example:8443/collections/x/products/caf%C3%A9-mug?variant=1"
    assert extract_handle(url) == "café-mug"
    assert origin_of(url) == "https://shop.example:8443"
    with pytest.raises(ValueError):
        extract_handle("https://shop.example/pages/about")


def test_iterate_start_urls_accepts_objects_and_skips_duplicates():
    urls = list(iterate_start_urls([" https://a.example/sitemap.xml\n", {"url": "https://a.example/sitemap.xml"}, "", {"url": "https://b.example/s.xml"}]))
    assert urls == ["https://a.example/sitemap.xml", "https://b.example/s.xml"]


def test_text_helpers():
    assert strip_html("<p>Soft <b>cotton</b></p>") == "Soft cotton"
    assert strip_html("") is None
    assert to_snake_case("Color") == "color"
    assert to_snake_case("Size Group") == "size_group"
    assert parse_iso_date_safe("2024-05-01T10:00:00Z").tzinfo == timezone.utc
    assert parse_iso_date_safe("2024-05-01").year == 2024
    assert parse_iso_date_safe("yesterday") is None


def test_variant_attributes_use_option_names():
    product = {"options": [{"name": "Color"}, {"name": "Fabric Type"}]}
    name, props = derive_variant_attributes({"option1": "Red", "option2": "Linen"}, product)
    assert name == "Color: Red / Fabric Type: Linen"
    assert props == {"color": "Red", "fabric_type": "Linen"}
    assert derive_variant_attributes({"option1": "x"}, {"options": [{"name": "Title"}]}) == ("Default", {})


def test_map_to_dataset_builds_the_output_record():
    product = normalize_product(product_fragment(123, "red-shirt"))
    item = map_to_dataset(record_data(product, "https://shop.example/products/red-shirt"))

    assert item["id"] == "123"
    assert item["url"] == "https://shop.example/products/red-shirt"
    assert item["title"] == "Red Shirt"
    assert item["brand"] == "Acme"
    assert item["description"] == "Soft cotton"
    assert item["sku"] == "SKU-123"
    assert item["price"] == 19.9
    assert item["currency"] == "EUR"
    assert item["availability"] == "in stock"
    assert (item["color"], item["size"]) == ("Red", "M")
    assert item["images_urls"] == ["https://cdn.example/a.jpg", "https://cdn.example/featured.jpg"]
    assert item["additional"]["tags"] == ["summer", "sale"]
    assert item["additional"]["weight"] == "0.2 KILOGRAMS"
    assert item["additional"]["variant_attributes"] == "Color: Red / Size: M"
    assert item["additional"]["variants"][0]["sku"] == "SKU-123"


def test_map_to_dataset_without_product_returns_none():
    assert map_to_dataset({"product": None}) is None
