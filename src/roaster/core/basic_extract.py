"""The ``basic`` tier: PDF text plus regex heuristics, no AI calls."""

from __future__ import annotations

import io
import logging
import re

import pdfplumber

from roaster.errors import ValidationError
from roaster.types import EducationItem, ExperienceItem, JobPostingData, PersonalInfo, ResumeData, SkillSet

logger = logging.getLogger(__name__)

_EMAIL = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_PHONE = re.compile(r"(\+?\d[\d\s().-]{7,}\d)")
_URL = re.compile(r"(https?://\S+|(?:www\.)?linkedin\.com/\S+)", re.IGNORECASE)
_DATE_RANGE = re.compile(
    r"((?:\w{3,9}\.?\s+)?\d{4}|\d{1,2}/\d{4})\s*[-–—to]+\s*((?:\w{3,9}\.?\s+)?\d{4}|\d{1,2}/\d{4}|present|current)",
    re.IGNORECASE,
)

_SECTION_ALIASES = {
    "summary": "summary",
    "profile": "summary",
    "objective": "summary",
    "professional summary": "summary",
    "experience": "experience",
    "work experience": "experience",
    "professional experience": "experience",
    "employment": "experience",
    "education": "education",
    "skills": "skills",
    "technical skills": "skills",
    "core competencies": "skills",
    "projects": "projects",
    "certifications": "certifications",
    "languages": "languages",
}

_JOB_KEYWORDS = [
    "python",
    "java",
    "javascript",
    "typescript",
    "sql",
    "aws",
    "azure",
    "gcp",
    "docker",
    "kubernetes",
    "react",
    "machine learning",
    "leadership",
    "communication",
    "agile",
]


def extract_pdf_text(data: bytes) -> str:
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as exc:
        logger.warning("Failed to read PDF: %s", exc)
        raise ValidationError("Uploaded file is not a readable PDF") from exc
    return "\n".join(pages).strip()


def truncate_text(text: str, max_chars: int, marker: str = "") -> str:
    if len(text) <= max_chars:
        return text
    logger.info("Truncated text: %d -> %d chars", len(text), max_chars)
    return text[:max_chars] + marker


def split_sections(text: str) -> dict[str, list[str]]:
    sections: dict[str, list[str]] = {"header": []}
    current = "header"
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        key = re.sub(r"[^a-z ]+", "", line.lower()).strip()
        if key in _SECTION_ALIASES and len(line) < 40:
            current = _SECTION_ALIASES[key]
            sections.setdefault(current, [])
            continue
        sections.setdefault(current, []).append(line)
    return sections


def heuristic_resume(text: str) -> ResumeData:
    sections = split_sections(text)
    header = sections.get("header", [])

    email = _EMAIL.search(text)
    phone = _PHONE.search(text)
    links = _URL.findall(text)
    personal = PersonalInfo(
        name=header[0] if header else "",
        email=email.group(0) if email else "",
        phone=phone.group(0).strip() if phone else "",
        linkedin=next((link for link in links if "linkedin" in link.lower()), ""),
        website=next((link for link in links if "linkedin" not in link.lower()), ""),
    )

    return ResumeData(
        personal_info=personal,
        summary=" ".join(sections.get("summary", [])),
        experience=_experience(sections.get("experience", [])),
        education=[EducationItem(institution=line) for line in sections.get("education", [])[:5]],
        skills=SkillSet(
            technical=_split_list(sections.get("skills", [])),
            languages=_split_list(sections.get("languages", [])),
            certifications=sections.get("certifications", []),
        ),
        projects=sections.get("projects", []),
        raw_text=text,
    )


def _experience(lines: list[str]) -> list[ExperienceItem]:
    items: list[ExperienceItem] = []
    current: ExperienceItem | None = None
    for line in lines:
        bullet = line.lstrip("•-*▪ ").strip()
        dates = _DATE_RANGE.search(line)
        if dates or current is None:
            current = ExperienceItem(position=_DATE_RANGE.sub("", line).strip(" |,-"))
            if dates:
                current.start_date, current.end_date = dates.group(1), dates.group(2)
            items.append(current)
        elif line[:1] in "•-*▪":
            current.achievements.append(bullet)
        elif not current.company:
            current.company = line
        else:
            current.achievements.append(bullet)
    return items


def _split_list(lines: list[str]) -> list[str]:
    values: list[str] = []
    for line in lines:
        if ":" in line:
            line = line.split(":", 1)[1]
        for item in re.split(r"[,;|•]", line):
            item = item.strip()
            if item and item not in values:
                values.append(item)
    return values


def heuristic_job_posting(text: str) -> JobPostingData:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    responsibilities = [line for line in lines if "responsib" in line.lower()][:8]
    requirements = [line for line in lines if "require" in line.lower() or "qualif" in line.lower()][:8]

    if not responsibilities:
        responsibilities = lines[1:5]
    if not requirements:
        requirements = lines[5:10]

    lowered = text.lower()
    return JobPostingData(
        title=lines[0] if lines else "",
        responsibilities=responsibilities,
        requirements=requirements,
        keywords=[token for token in _JOB_KEYWORDS if token in lowered],
        raw_text=text,
    )
