from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

MAX_PAGES = 3


class VisionPreprocessor:
    """Turns PDF pages into base64 JPEGs through the external converter service.

    Every failure mode collapses to an empty list: callers treat that as
    "no images" and extract from text instead.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_sec: float = 60.0,
        max_pages: int = MAX_PAGES,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_pages = max(1, min(max_pages, MAX_PAGES))
        self.client = client or httpx.AsyncClient(timeout=timeout_sec)

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def pdf_to_images(self, data: bytes) -> list[str]:
        if not self.enabled:
            logger.info("PDF converter service not configured; skipping vision preprocessing")
            return []

        url = f"{self.base_url}/pdf-to-images"
        logger.info("Converting PDF to images size_kb=%s service=%s", len(data) // 1024, self.base_url)
        try:
            response = await self.client.post(
                url,
                files={"file": ("document.pdf", data, "application/pdf")},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("PDF to image conversion failed; falling back to text: %s", exc)
            return []

        if not isinstance(payload, dict) or not payload.get("success"):
            logger.warning("PDF converter reported failure; falling back to text: %s", payload)
            return []

        pages = payload.get("images")
        if not isinstance(pages, list):
            logger.warning("PDF converter returned no image list; falling back to text")
            return []

        images = [image for image in pages if isinstance(image, str) and image]
        if len(images) > self.max_pages:
            logger.info("Keeping first %s of %s converted pages", self.max_pages, len(images))
        images = images[: self.max_pages]
        logger.info("Converted PDF into %s page images", len(images))
        return images

    async def aclose(self) -> None:
        await self.client.aclose()
