"""
Listing Export - Renders a listing as a marketplace bulk-upload CSV.

Pure functions over the reconstructed aggregate and its effective content
for one channel. Files are UTF-8 with a BOM and CRLF line endings so they
open cleanly in spreadsheet tools.
"""

import csv
import io
import re
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from listing_engine.models.domain import (
    ChannelContent,
    ChannelDefinition,
    ExportFile,
    ListingAggregate,
)

CSV_CONTENT_TYPE = "text/csv; charset=utf-8"

Row = list[Any]
Layout = Callable[[ListingAggregate, ChannelContent], tuple[Sequence[str], list[Row]]]


def slugify(text: str) -> str:
    """URL-friendly handle from a title."""
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def format_price(price: Any) -> str:
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        return ""
    return f"{price:.2f}"


def text_to_html(text: str) -> str:
    """Blank-line separated paragraphs to <p> blocks."""
    paragraphs = [p for p in text.split("\n\n") if p]
    return "".join(f"<p>{p.replace(chr(10), '<br>')}</p>" for p in paragraphs)


def strip_html(text: str) -> str:
    return re.sub(r"<[^>]*>", "", text)


def truncate(text: str, max_length: int, suffix: str = "...") -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - len(suffix)] + suffix


# ============================================================================
# Layouts
# ============================================================================


def _shopify_rows(
    aggregate: ListingAggregate, content: ChannelContent
) -> tuple[Sequence[str], list[Row]]:
    headers = (
        "Handle",
        "Title",
        "Body (HTML)",
        "Type",
        "Tags",
        "Published",
        "Variant SKU",
        "Variant Price",
        "Image Src",
        "Image Position",
        "Image Alt Text",
        "SEO Title",
        "SEO Description",
        "Status",
    )
    handle = slugify(content.title)
    alt_texts = {image.url: image.alt_text for image in aggregate.images}
    urls = list(content.images) or [""]

    rows: list[Row] = []
    for index, url in enumerate(urls):
        first = index == 0
        rows.append(
            [
                handle,
                content.title if first else "",
                text_to_html(content.description) if first else "",
                content.category or "",
                ", ".join(content.tags) if first else "",
                "true",
                aggregate.base_data.get("sku") or "",
                format_price(content.price) if first else "",
                url,
                index + 1 if url else "",
                alt_texts.get(url) or content.title,
                content.title if first else "",
                truncate(strip_html(content.description), 320) if first else "",
                "active",
            ]
        )
    return headers, rows


def _ebay_rows(
    aggregate: ListingAggregate, content: ChannelContent
) -> tuple[Sequence[str], list[Row]]:
    headers = (
        "Action",
        "Category",
        "Title",
        "Description",
        "Condition",
        "Format",
        "Duration",
        "BuyItNowPrice",
        "Quantity",
        "Location",
        "PicURL",
        "C:Brand",
        "C:MPN",
    )
    custom = content.custom_fields
    row: Row = [
        "Add",
        custom.get("categoryId") or content.category or "",
        content.title,
        text_to_html(content.description),
        custom.get("condition") or "New",
        "FixedPrice",
        "GTC",
        format_price(content.price),
        aggregate.base_data.get("quantity") or 1,
        custom.get("location") or "United States",
        "|".join(content.images),
        custom.get("brand") or "",
        aggregate.base_data.get("sku") or "",
    ]
    return headers, [row]


def _facebook_rows(
    aggregate: ListingAggregate, content: ChannelContent
) -> tuple[Sequence[str], list[Row]]:
    headers = (
        "id",
        "title",
        "description",
        "availability",
        "condition",
        "price",
        "image_link",
        "additional_image_link",
        "google_product_category",
        "quantity_to_sell_on_facebook",
        "material",
    )
    price = format_price(content.price)
    row: Row = [
        str(aggregate.id),
        content.title,
        strip_html(content.description),
        "in stock",
        "new",
        f"{price} USD" if price else "",
        content.images[0] if content.images else "",
        ",".join(content.images[1:]),
        content.category or "",
        aggregate.base_data.get("quantity") or 999,
        ", ".join(content.materials),
    ]
    return headers, [row]


def _amazon_rows(
    aggregate: ListingAggregate, content: ChannelContent
) -> tuple[Sequence[str], list[Row]]:
    bullet_headers = [f"bullet_point{n}" for n in range(1, 6)]
    image_headers = [f"other_image_url{n}" for n in range(1, 9)]
    headers = (
        "item_sku",
        "item_name",
        "product_description",
        *bullet_headers,
        "generic_keywords",
        "standard_price",
        "main_image_url",
        *image_headers,
    )
    bullets = list(content.bullets[:5]) + [""] * (5 - min(len(content.bullets), 5))
    others = list(content.images[1:9]) + [""] * (8 - min(len(content.images[1:]), 8))
    row: Row = [
        aggregate.base_data.get("sku") or "",
        content.title,
        strip_html(content.description),
        *bullets,
        " ".join(content.tags),
        format_price(content.price),
        content.images[0] if content.images else "",
        *others,
    ]
    return headers, [row]


def _generic_rows(
    aggregate: ListingAggregate, content: ChannelContent
) -> tuple[Sequence[str], list[Row]]:
    headers = ("Title", "Description", "Price", "Category", "Tags", "Images")
    row: Row = [
        content.title,
        content.description,
        format_price(content.price),
        content.category or "",
        ", ".join(content.tags),
        " ".join(content.images),
    ]
    return headers, [row]


# Etsy and TikTok Shop accept the Shopify product layout
LAYOUTS: dict[str, Layout] = {
    "shopify": _shopify_rows,
    "etsy": _shopify_rows,
    "tiktok": _shopify_rows,
    "ebay": _ebay_rows,
    "facebook-ig": _facebook_rows,
    "amazon": _amazon_rows,
}


def render_csv(headers: Sequence[str], rows: list[Row]) -> str:
    """CSV text with a UTF-8 BOM and CRLF line endings."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\r\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return "\ufeff" + buffer.getvalue()


def build_export(
    definition: ChannelDefinition,
    aggregate: ListingAggregate,
    content: ChannelContent,
    now: datetime,
) -> ExportFile:
    """Render one channel's upload file; unknown channels get a generic layout."""
    layout = LAYOUTS.get(definition.slug, _generic_rows)
    headers, rows = layout(aggregate, content)
    handle = slugify(content.title) or str(aggregate.id)
    return ExportFile(
        file_name=f"{definition.slug}-{handle}-{now.date().isoformat()}.csv",
        content_type=CSV_CONTENT_TYPE,
        content=render_csv(headers, rows),
    )
