from __future__ import annotations

import pytest

from roaster.core.basic_extract import (
    extract_pdf_text,
    heuristic_job_posting,
    heuristic_resume,
    split_sections,
    truncate_text,
)
from roaster.core.scoring import ats_score, keywords_matched, render_resume_html
from roaster.errors import ValidationError
from support import RESUME_PAYLOAD, make_pdf

RESUME = """Jane Doe
jane@example.com | +1 555 123 4567 | linkedin.com/in/janedoe

Summary
Backend engineer who ships reliable Python services.

Experience
Senior Engineer | Jan 2020 - Present
Acme Corp
- Cut p99 latency by 40%
- Led PostgreSQL migration

Education
State University, BSc Computer Science

Skills
Languages: Python, Go; SQL
"""


def test_split_sections_groups_lines_under_headings() -> None:
    sections = split_sections(RESUME)
    assert sections["header"][0] == "Jane Doe"
    assert sections["summary"] == ["Backend engineer who ships reliable Python services."]
    assert "Acme Corp" in sections["experience"]


def test_heuristic_resume_extracts_contact_experience_and_skills() -> None:
    resume = heuristic_resume(RESUME)

    assert resume.kind == "resume"
    assert resume.personal_info.name == "Jane Doe"
    assert resume.personal_info.email == "jane@example.com"
    assert "linkedin.com/in/janedoe" in resume.personal_info.linkedin
    assert resume.summary.startswith("Backend engineer")

    job = resume.experience[0]
    assert job.start_date == "Jan 2020"
    assert job.end_date == "Present"
    assert job.company == "Acme Corp"
    assert job.achievements == ["Cut p99 latency by 40%", "Led PostgreSQL migration"]
    assert resume.skills.technical == ["Python", "Go", "SQL"]
    assert resume.raw_text == RESUME


def test_heuristic_job_posting_picks_title_and_keywords() -> None:
    job = heuristic_job_posting(
        "Backend Engineer\nRequirements: Python and Docker\nResponsibilities: build APIs on AWS"
    )
    assert job.title == "Backend Engineer"
    assert job.requirements == ["Requirements: Python and Docker"]
    assert job.responsibilities == ["Responsibilities: build APIs on AWS"]
    assert set(job.keywords) == {"python", "docker", "aws"}


def test_truncate_text_appends_marker_only_when_cut() -> None:
    assert truncate_text("short", 10, "...") == "short"
    assert truncate_text("x" * 12, 10, "[cut]") == "x" * 10 + "[cut]"


def test_extract_pdf_text_reads_text_layer() -> None:
    text = extract_pdf_text(make_pdf("Jane Doe", "Senior Engineer"))
    assert "Jane Doe" in text
    assert "Senior Engineer" in text


def test_extract_pdf_text_rejects_garbage() -> None:
    with pytest.raises(ValidationError):
        extract_pdf_text(b"definitely not a pdf")


def test_ats_score_rewards_complete_quantified_resumes() -> None:
    assert ats_score(RESUME_PAYLOAD) == 100
    assert ats_score({}) == 0
    assert ats_score({"personal_info": {"name": "A", "email": "a@b.c"}}) == 20


def test_keywords_matched_uses_job_words_found_in_resume() -> None:
    matched = keywords_matched(RESUME_PAYLOAD, "Python PostgreSQL Kubernetes Docker wanted")
    assert matched == ["python", "postgresql", "docker"]
    assert keywords_matched(RESUME_PAYLOAD, "") == []


def test_render_resume_html_escapes_content() -> None:
    html = render_resume_html({"personal_info": {"name": "<script>"}, "summary": "A & B"}, "modern")
    assert '<div class="resume-modern">' in html
    assert "&lt;script&gt;" in html
    assert "A &amp; B" in html
