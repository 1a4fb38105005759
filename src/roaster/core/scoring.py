from __future__ import annotations

import html
import json
import re
from typing import Any

_WORD = re.compile(r"\b\w+\b")


def ats_score(resume: dict[str, Any]) -> int:
    """Completeness score out of 100 for an extracted résumé payload."""
    personal = resume.get("personal_info") or {}
    skills = resume.get("skills") or {}
    experience = resume.get("experience") or []

    score = 0
    if personal.get("name"):
        score += 10
    if personal.get("email"):
        score += 10
    if personal.get("phone"):
        score += 5
    if resume.get("summary"):
        score += 15
    if experience:
        score += 20
    if resume.get("education"):
        score += 10
    if skills.get("technical"):
        score += 15

    quantified = any(
        re.search(r"\d", achievement)
        for item in experience
        for achievement in (item.get("achievements") or [])
    )
    if quantified:
        score += 15
    return min(score, 100)


def keywords_matched(resume: dict[str, Any], job_description: str, limit: int = 10) -> list[str]:
    if not job_description:
        return []

    resume_text = json.dumps(resume).lower()
    matched: list[str] = []
    for keyword in _WORD.findall(job_description.lower()):
        if len(keyword) > 3 and keyword in resume_text and keyword not in matched:
            matched.append(keyword)
            if len(matched) == limit:
                break
    return matched


def render_resume_html(resume: dict[str, Any], template_id: str) -> str:
    esc = html.escape
    personal = resume.get("personal_info") or {}
    parts = [f'<div class="resume-{esc(template_id)}">', "<header>"]
    parts.append(f"<h1>{esc(personal.get('name') or 'Name')}</h1>")
    contact = [personal.get(key) for key in ("email", "phone", "location") if personal.get(key)]
    if contact:
        parts.append(
            '<div class="contact-info">' + "".join(f"<span>{esc(item)}</span>" for item in contact) + "</div>"
        )
    parts.append("</header>")

    if resume.get("summary"):
        parts.append(
            f'<section class="summary"><h2>Professional Summary</h2><p>{esc(resume["summary"])}</p></section>'
        )

    experience = resume.get("experience") or []
    if experience:
        parts.append('<section class="experience"><h2>Professional Experience</h2>')
        for item in experience:
            parts.append('<div class="experience-item">')
            parts.append(f"<h3>{esc(item.get('position', ''))} - {esc(item.get('company', ''))}</h3>")
            parts.append(
                f'<div class="dates">{esc(item.get("start_date", ""))} - {esc(item.get("end_date", ""))}</div>'
            )
            achievements = item.get("achievements") or []
            if achievements:
                parts.append("<ul>" + "".join(f"<li>{esc(a)}</li>" for a in achievements) + "</ul>")
            parts.append("</div>")
        parts.append("</section>")

    technical = (resume.get("skills") or {}).get("technical") or []
    if technical:
        parts.append(
            '<section class="skills"><h2>Technical Skills</h2>'
            f'<div class="skills-list">{esc(", ".join(technical))}</div></section>'
        )

    education = resume.get("education") or []
    if education:
        parts.append('<section class="education"><h2>Education</h2>')
        for item in education:
            parts.append(
                '<div class="education-item">'
                f"<h3>{esc(item.get('degree', ''))} in {esc(item.get('field', ''))}</h3>"
                f"<div>{esc(item.get('institution', ''))} - {esc(item.get('graduation_date', ''))}</div>"
                "</div>"
            )
        parts.append("</section>")

    parts.append("</div>")
    return "\n".join(parts)
