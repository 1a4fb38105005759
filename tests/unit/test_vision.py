from __future__ import annotations

import asyncio

import httpx

from roaster.core.vision import VisionPreprocessor
from support import converter


def test_converter_pages_are_returned_and_capped() -> None:
    calls: list[httpx.Request] = []
    vision = converter(["p1", "p2", "p3", "p4", "p5"], calls=calls)

    images = asyncio.run(vision.pdf_to_images(b"%PDF-1.4"))

    assert images == ["p1", "p2", "p3"]
    assert calls[0].url.path == "/pdf-to-images"
    assert b'filename="document.pdf"' in calls[0].content


def test_non_2xx_response_yields_no_images() -> None:
    vision = converter(["p1"], status_code=502)
    assert asyncio.run(vision.pdf_to_images(b"%PDF-1.4")) == []


def test_unsuccessful_payload_yields_no_images() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "corrupt pdf"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    vision = VisionPreprocessor("http://converter.test", client=client)
    assert asyncio.run(vision.pdf_to_images(b"%PDF-1.4")) == []


def test_transport_error_yields_no_images() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    vision = VisionPreprocessor("http://converter.test", client=client)
    assert asyncio.run(vision.pdf_to_images(b"%PDF-1.4")) == []


def test_unconfigured_service_is_disabled() -> None:
    vision = VisionPreprocessor("")
    assert vision.enabled is False
    assert asyncio.run(vision.pdf_to_images(b"%PDF-1.4")) == []


def test_max_pages_never_exceeds_three() -> None:
    assert VisionPreprocessor("http://x", max_pages=10).max_pages == 3
    assert VisionPreprocessor("http://x", max_pages=1).max_pages == 1


def test_malformed_image_list_yields_no_images() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "images": "abc"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    vision = VisionPreprocessor("http://converter.test", client=client)
    assert asyncio.run(vision.pdf_to_images(b"%PDF-1.4")) == []
