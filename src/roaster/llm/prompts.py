from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from roaster.types import ToolSchema

# Bumping a version invalidates every cached row built with the old prompt.
RESUME_EXTRACTION_VERSION = "resume-extract-v1"
JOB_EXTRACTION_VERSION = "job-extract-v1"
SUMMARY_VERSION = "summary-v1"
GENERATION_VERSION = "generate-v1"

RESUME_SYSTEM_PROMPT = (
    "You are an expert resume parser. Extract resume data accurately into structured JSON. "
    "Never invent information that is not present. Use the provided tool to return structured data."
)

RESUME_TEXT_EXTRACTION_PROMPT = """
Extract the following resume into structured data.
If information is missing, use empty strings or empty arrays.
Do not omit any experience, education or skills present in the text.

RESUME TEXT:
{resume_text}
""".strip()

RESUME_VISION_EXTRACTION_PROMPT = """
The attached images are the pages of a resume, in order.
Extract the resume into structured data, reading layout, columns and tables carefully.
If information is missing, use empty strings or empty arrays.

Plain text pulled from the same PDF, for reference (may be incomplete):
{resume_text}
""".strip()

JOB_EXTRACTION_PROMPT = """
Extract structured details from this job description.
Return JSON with keys: title, company, location, responsibilities, requirements,
nice_to_have, compensation, keywords.

JOB DESCRIPTION:
{job_text}
""".strip()

SUMMARY_PROMPT = """
Condense the following {source_kind} into a short headline, a 3-4 sentence summary,
and at most 8 key points. Return JSON with keys: headline, summary, key_points.

{source_kind_upper} DATA:
{source_json}
""".strip()

ROAST_SYSTEM_PROMPT = (
    "You are a brutally honest but constructive senior recruiter. "
    "You roast resumes with wit, then give concrete, actionable fixes."
)

ROAST_PROMPT = """
Roast this resume{job_clause}.
Score it from 0 to 100 for how likely it is to get an interview.
Return JSON with keys: overall_score, verdict, strengths, weaknesses, suggestions,
keyword_match (object with matched and missing arrays).

{job_block}RESUME TEXT:
{resume_text}
""".strip()

COVER_LETTER_PROMPT = """
Write a cover letter in a {tone} tone for the candidate below{job_clause}.
Use only facts present in the resume.
Return JSON with keys: greeting, body (array of paragraphs), closing.

{job_block}RESUME TEXT:
{resume_text}
""".strip()

OPTIMIZE_RESUME_SYSTEM_PROMPT = (
    "You are an expert resume parser and career coach. Extract resume data into structured JSON "
    "that is optimized for ATS systems and tailored for the target job. Use the provided tool "
    "to return structured data."
)

OPTIMIZE_RESUME_PROMPT = """
Extract and structure the following resume data into a comprehensive, ATS-optimized form.

{job_block}RESUME TEXT:
{resume_text}

{analysis_block}IMPORTANT INSTRUCTIONS:
1. Extract information accurately from the resume text
2. Optimize content for ATS compatibility
3. Include quantified achievements where possible
4. Match keywords from the job description naturally
5. Ensure all dates are in MM/YYYY format
6. If information is missing, use empty strings or empty arrays
7. Do not omit any information from the resume text
""".strip()

INTERVIEW_PREP_PROMPT = """
Prepare {question_count} {difficulty}-difficulty interview questions for this candidate{job_clause}.
For each question give a category, a suggested answer grounded in the resume, and short tips.
Return JSON with keys: questions (array of objects with question, category, suggested_answer, tips),
focus_areas.

{job_block}RESUME TEXT:
{resume_text}
""".strip()


def job_clause(job_description: str) -> str:
    return " against the target job description" if job_description.strip() else ""


def job_block(job_description: str) -> str:
    if not job_description.strip():
        return ""
    return f"TARGET JOB DESCRIPTION:\n{job_description}\n\n"


def analysis_block(analysis: dict[str, Any]) -> str:
    if not analysis:
        return ""

    def top(values: Any, count: int) -> str:
        if not isinstance(values, list):
            return ""
        return ", ".join(str(value) for value in values[:count])

    keyword_match = analysis.get("keyword_match") or analysis.get("keywordMatch") or {}
    lines = [
        "ANALYSIS INSIGHTS:",
        f"- Overall Score: {analysis.get('overall_score', analysis.get('overallScore', ''))}%",
        f"- Key Strengths: {top(analysis.get('strengths'), 3)}",
        f"- Areas for Improvement: {top(analysis.get('weaknesses'), 3)}",
        f"- Matched Keywords: {top(keyword_match.get('matched'), 5)}",
        f"- Missing Keywords: {top(keyword_match.get('missing'), 5)}",
    ]
    return "\n".join(lines) + "\n\n"


_ENVELOPE_FIELDS = {"kind", "schema_version", "raw_text"}


def tool_for(model_cls: type[BaseModel], *, name: str, description: str) -> ToolSchema:
    """Builds a function/tool schema from a payload model minus its envelope fields."""
    schema = model_cls.model_json_schema()
    properties = {
        key: value for key, value in schema.get("properties", {}).items() if key not in _ENVELOPE_FIELDS
    }
    parameters: dict[str, Any] = {"type": "object", "properties": properties}
    if "$defs" in schema:
        parameters["$defs"] = schema["$defs"]
    return ToolSchema(name=name, description=description, parameters=parameters)
