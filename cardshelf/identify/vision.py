"""
Cardshelf - Vision Identification

Identifies a trading card from photos (raw or inside a graded slab) via the
Claude Vision API, then optionally prices it against marketplace listings.

Only image bytes and a fixed prompt are sent to the model.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Sequence
from typing import Any

import anthropic
import structlog

from cardshelf.config import settings
from cardshelf.identify.result import IdentifyResult, parse_identification
from cardshelf.pipeline.ebay import EbayClient, build_marketplace_query

logger = structlog.get_logger(__name__)

IDENTIFY_PROMPT = (
    "You are identifying a sports trading card from photos (possibly inside a graded slab). "
    "IMPORTANT: Read any visible label text (OCR) from the grading label and the card itself. "
    "Extract the best-guess structured fields. "
    "Return JSON ONLY with keys: "
    "confidence (0-100 integer), title, year, player, manufacturer, team, league, sport, "
    "set_name, card_number, condition, condition_detail, country_of_origin, "
    "original_licensed_reprint, parallel_variety, features, season, year_manufactured, "
    "autograph (boolean|null), is_graded (boolean|null), grading_company, grade, evidence_text. "
    "Use null for unknown fields. "
    "For year: return a number. If the card uses a season like 2015-16, return 2015. "
    "If a graded label is visible, set is_graded=true, grading_company and grade accordingly. "
    "If the card indicates an autograph (e.g., auto/Autograph/on-card signature), set "
    "autograph=true, else false if clearly not. "
    "evidence_text should be a short concatenation of the key text you read (e.g., label "
    "lines) to support the extraction. "
    "Confidence should reflect how sure you are about the OVERALL identification."
)


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def _image_blocks(images: Sequence[bytes], media_type: str) -> list[dict[str, Any]]:
    if not media_type.startswith("image/"):
        media_type = "image/jpeg"
    return [
        {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": media_type,
                "data": base64.standard_b64encode(image).decode("utf-8"),
            },
        }
        for image in images[: settings.VISION_MAX_IMAGES]
    ]


async def identify_card(
    images: Sequence[bytes],
    media_type: str = "image/jpeg",
) -> IdentifyResult | None:
    """
    Ask the vision model for structured card fields.

    Args:
        images: Raw photo bytes; only the first VISION_MAX_IMAGES are sent.
        media_type: MIME type of the photos.

    Returns:
        IdentifyResult, or None if no API key is configured, no images were
        given, or the call / response parsing fails.
    """
    if not images:
        logger.warning("vision_identify_no_images", source="vision")
        return None

    if not settings.ANTHROPIC_API_KEY:
        logger.warning("vision_identify_no_api_key", source="vision")
        return None

    try:
        client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        response = await client.messages.create(
            model=settings.VISION_MODEL_ID,
            max_tokens=settings.VISION_MAX_TOKENS,
            temperature=0,
            messages=[{
                "role": "user",
                "content": [
                    *_image_blocks(images, media_type),
                    {"type": "text", "text": IDENTIFY_PROMPT},
                ],
            }],
        )
    except anthropic.APIError as e:
        logger.error("vision_identify_failed", error=str(e), source="vision")
        return None

    try:
        raw = _strip_code_fence(response.content[0].text)
        extracted = json.loads(raw)
    except (json.JSONDecodeError, IndexError, AttributeError) as parse_err:
        logger.warning("vision_identify_parse_error", error=str(parse_err), source="vision")
        return None

    if not isinstance(extracted, dict):
        logger.warning("vision_identify_not_an_object", source="vision")
        return None

    result = parse_identification(extracted)
    logger.info(
        "vision_identify_complete",
        confidence=result.confidence,
        image_count=min(len(images), settings.VISION_MAX_IMAGES),
        source="vision",
    )
    return result


async def price_identification(
    result: IdentifyResult,
    ebay_client: EbayClient,
    country: str | None = None,
) -> IdentifyResult:
    """
    Merge a marketplace estimate into an identification result.

    Pricing is best-effort: on any failure the result comes back unpriced.
    """
    query = build_marketplace_query(
        year=result.year,
        manufacturer=result.manufacturer,
        set_name=result.set_name,
        player=result.player,
        card_number=result.card_number,
        autograph=result.autograph,
        grading_company=result.grading_company,
        grade=result.grade,
    )
    try:
        estimate, listings = await ebay_client.estimate_for_query(query, country)
    except Exception as e:
        logger.warning("identify_pricing_failed", query=query, error=str(e), source="vision")
        return result

    return result.model_copy(update={
        "estimated_price": estimate.estimated_price,
        "estimated_currency": estimate.currency,
        "marketplace_listings_used": estimate.listings_used,
        "marketplace_listings": listings,
    })


async def identify_and_price(
    images: Sequence[bytes],
    ebay_client: EbayClient,
    country: str | None = None,
    media_type: str = "image/jpeg",
) -> IdentifyResult | None:
    """Identify a card, then price it. None only when identification fails."""
    result = await identify_card(images, media_type)
    if result is None:
        return None
    return await price_identification(result, ebay_client, country)
