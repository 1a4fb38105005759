"""Shared test doubles and fixture data."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx

from roaster.core.vision import VisionPreprocessor
from roaster.llm.providers import Completion, ProviderAdapter, ProviderConfig
from roaster.types import ProviderRequest


class ScriptedAdapter(ProviderAdapter):
    """Provider adapter whose API call returns ``payload`` (or whatever ``responder`` builds)."""

    def __init__(self, name: str, payload: dict[str, Any] | None = None):
        super().__init__(ProviderConfig(name=name, api_key="test-key", timeout_sec=5))
        self.name = name
        self.payload: dict[str, Any] = payload or {}
        self.responder: Callable[[str, ProviderRequest], Any] | None = None
        self.calls: list[tuple[str, ProviderRequest]] = []

    async def _call_api(self, model_id: str, request: ProviderRequest) -> Completion:
        self.calls.append((model_id, request))
        if self.responder is not None:
            outcome = self.responder(model_id, request)
            if hasattr(outcome, "__await__"):
                outcome = await outcome
            return outcome
        return Completion(
            text=json.dumps(self.payload),
            tool_input=dict(self.payload) if request.tool is not None else None,
            input_tokens=1000,
            output_tokens=500,
            finish_reason="stop",
        )


def make_pdf(*lines: str) -> bytes:
    """Builds a small single-page PDF whose text layer holds ``lines``."""
    commands = ["BT", "/F1 12 Tf", "14 TL", "72 720 Td"]
    for line in lines:
        escaped = line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        commands.append(f"({escaped}) Tj T*")
    commands.append("ET")
    stream = "\n".join(commands).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets: list[int] = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref)
    return bytes(out)


def converter(images: list[str], *, status_code: int = 200, calls: list[httpx.Request] | None = None):
    """A vision preprocessor backed by an in-process mock of the PDF converter service."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if status_code != 200:
            return httpx.Response(status_code, json={"success": False, "error": "boom"})
        return httpx.Response(200, json={"success": True, "images": images, "page_count": len(images)})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VisionPreprocessor("http://converter.test", max_pages=3, client=client)


RESUME_PAYLOAD: dict[str, Any] = {
    "personal_info": {"name": "Jane Doe", "email": "jane@example.com", "phone": "555-123-4567"},
    "summary": "Backend engineer focused on Python services.",
    "experience": [
        {
            "company": "Acme",
            "position": "Senior Engineer",
            "start_date": "2020",
            "end_date": "Present",
            "achievements": ["Cut p99 latency by 40%", "Led migration to PostgreSQL"],
        }
    ],
    "education": [{"institution": "State University", "degree": "BSc", "field": "Computer Science"}],
    "skills": {"technical": ["Python", "PostgreSQL", "Docker"]},
}

ROAST_PAYLOAD: dict[str, Any] = {
    "overall_score": 72,
    "verdict": "Solid bones, bland delivery.",
    "strengths": ["Quantified impact"],
    "weaknesses": ["Generic summary"],
    "suggestions": ["Lead with outcomes"],
    "keyword_match": {"matched": ["python"], "missing": ["kubernetes"]},
}

RESUME_TEXT = "Jane Doe\njane@example.com\n\nExperience\nSenior Engineer | 2020 - Present\nAcme\n- Cut p99 latency by 40%"
JOB_TEXT = "Backend Engineer\nRequirements: Python, PostgreSQL, Kubernetes\nResponsibilities: build APIs"

