"""
Cardshelf - Roboflow Card Detection Client

Posts a photo to the card/slab detection workflow and returns the padded,
clamped region of the largest detected card. Used to auto-crop uploads.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from cardshelf.config import settings
from cardshelf.detection.bbox import (
    BoundingBox,
    DetectionError,
    collect_predictions,
    pad_and_clamp,
    select_largest,
)

logger = structlog.get_logger(__name__)


class RoboflowClient:
    """
    Usage:
        async with RoboflowClient() as client:
            box = await client.detect(image_b64, width, height)
    """

    def __init__(self) -> None:
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "RoboflowClient":
        self._client = httpx.AsyncClient(timeout=30.0)
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    async def detect(
        self,
        image_b64: str,
        image_width: int,
        image_height: int,
    ) -> BoundingBox | None:
        """
        Detect the card region in a base64-encoded JPEG.

        Args:
            image_b64: Base64 image data (already EXIF-rotated).
            image_width: Pixel width of that image.
            image_height: Pixel height of that image.

        Returns:
            Padded BoundingBox, or None if detection is unavailable, fails,
            or finds no usable region.
        """
        if not self._client:
            return None
        if not settings.ROBOFLOW_API_KEY:
            logger.warning("roboflow_no_api_key", source="roboflow")
            return None
        if image_width <= 0 or image_height <= 0:
            logger.warning(
                "roboflow_invalid_dimensions",
                width=image_width,
                height=image_height,
                source="roboflow",
            )
            return None

        try:
            response = await self._client.post(
                settings.ROBOFLOW_WORKFLOW_URL,
                json={
                    "api_key": settings.ROBOFLOW_API_KEY,
                    "inputs": {"image": {"type": "base64", "value": image_b64}},
                },
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("roboflow_request_failed", error=str(e), source="roboflow")
            return None

        predictions = collect_predictions(payload)
        best = select_largest(predictions, image_width, image_height)
        if best is None:
            logger.info(
                "roboflow_no_card_detected",
                prediction_count=len(predictions),
                source="roboflow",
            )
            return None

        try:
            box = pad_and_clamp(best, image_width, image_height)
        except DetectionError as e:
            logger.info("roboflow_box_rejected", error=str(e), source="roboflow")
            return None

        logger.info(
            "roboflow_card_detected",
            x=box.x, y=box.y, width=box.width, height=box.height,
            prediction_count=len(predictions),
            source="roboflow",
        )
        return box
