from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from roaster.api.app import create_app
from support import JOB_TEXT, RESUME_PAYLOAD, RESUME_TEXT, converter, make_pdf


@pytest.fixture()
def client(services):
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


def _create_account(client: TestClient, email: str = "jane@example.com", tier: str = "free") -> int:
    response = client.post("/api/accounts", json={"email": email, "name": "Jane", "tier": tier})
    assert response.status_code == 200
    return response.json()["id"]


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_account_create_uses_camel_case_and_rejects_duplicates(client: TestClient) -> None:
    response = client.post("/api/accounts", json={"email": "a@example.com", "bonusCredits": 2})
    body = response.json()
    assert body["tier"] == "free"
    assert body["bonusCredits"] == 2
    assert body["monthlyUsage"] == 0

    duplicate = client.post("/api/accounts", json={"email": "a@example.com"})
    assert duplicate.status_code == 400
    assert "already exists" in duplicate.json()["error"]


def test_anonymous_text_extraction_and_dedup(client: TestClient) -> None:
    first = client.post("/api/resumes/extract", data={"text": RESUME_TEXT})
    second = client.post("/api/resumes/extract", data={"text": RESUME_TEXT + "\n\n"})

    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["extractionMethod"] == "basic"
    assert body["cached"] is False
    assert body["data"]["personal_info"]["email"] == "jane@example.com"
    assert second.json()["cached"] is True
    assert second.json()["artifactId"] == body["artifactId"]
    assert second.json()["metadata"]["fromDatabase"] is True


def test_pdf_upload_with_vision(client: TestClient, services, adapters) -> None:
    user_id = _create_account(client)
    services.vision = converter(["page-1", "page-2"])
    adapters["anthropic"].payload = dict(RESUME_PAYLOAD)

    response = client.post(
        "/api/resumes/extract",
        files={"file": ("resume.pdf", make_pdf("Jane Doe", "Senior Engineer"), "application/pdf")},
        data={"userId": str(user_id), "provider": "anthropic", "model": "sonnet", "extractionMethod": "auto"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["extractionMethod"] == "vision"
    assert body["hasImages"] is True
    assert body["imageCount"] == 2
    assert body["metadata"]["creditCost"] == 8
    assert body["metadata"]["model"] == "sonnet"


def test_extraction_input_errors(client: TestClient) -> None:
    missing = client.post("/api/resumes/extract", data={})
    assert missing.status_code == 400
    assert missing.json() == {"error": "No file or text provided"}

    not_pdf = client.post("/api/resumes/extract", files={"file": ("resume.docx", b"PK\x03\x04", "application/msword")})
    assert not_pdf.status_code == 400

    unknown_user = client.post("/api/resumes/extract", data={"text": RESUME_TEXT, "userId": "404"})
    assert unknown_user.status_code == 401


def test_roast_flow_charges_quota_and_lists_history(client: TestClient, adapters) -> None:
    user_id = _create_account(client)
    payload = {"resumeText": RESUME_TEXT, "jobDescription": JOB_TEXT, "userId": user_id}

    created = client.post("/api/roasts", json=payload)
    assert created.status_code == 200
    body = created.json()
    assert body["data"]["overall_score"] == 72
    assert body["metadata"]["raceLost"] is False
    assert body["metadata"]["creditCost"] == 4

    repeat = client.post("/api/roasts", json=payload)
    assert repeat.json()["cached"] is True
    assert len(adapters["openai"].calls) == 1

    quota = client.get(f"/api/accounts/{user_id}/quota").json()
    assert quota == {
        "allowed": True,
        "canRoast": True,
        "remaining": 2,
        "used": 1,
        "limit": 3,
        "tier": "free",
        "bonusCredits": 0,
    }

    history = client.get("/api/roasts", params={"userId": user_id}).json()
    assert [item["id"] for item in history] == [body["artifactId"]]
    assert history[0]["revision"] == 0

    owner = {"userId": user_id}
    artifact = client.get(f"/api/artifacts/roast/{body['artifactId']}", params=owner)
    assert artifact.status_code == 200
    assert artifact.json()["contentHash"] == body["contentHash"]
    assert client.get("/api/artifacts/roast/9999", params=owner).status_code == 404
    assert client.get("/api/artifacts/horoscope/1", params=owner).status_code == 400

    usage = client.get(f"/api/accounts/{user_id}/usage").json()
    assert usage["callCount"] == 1
    assert usage["totalTokens"] == 1500
    assert usage["totalCostUsd"] == "0.001200"
    assert usage["calls"][0]["operation"] == "roast_generation"


def test_quota_exhaustion_returns_402(client: TestClient) -> None:
    user_id = _create_account(client)
    for index in range(3):
        response = client.post("/api/roasts", json={"resumeText": f"{RESUME_TEXT}\nv{index}", "userId": user_id})
        assert response.status_code == 200

    blocked = client.post("/api/roasts", json={"resumeText": f"{RESUME_TEXT}\nv4", "userId": user_id})
    assert blocked.status_code == 402
    body = blocked.json()
    assert body["code"] == "quota_exceeded"
    assert body["quota"]["remaining"] == 0
    assert body["quota"]["allowed"] is False


def test_generation_auth_and_validation_errors(client: TestClient) -> None:
    assert client.post("/api/roasts", json={"resumeText": RESUME_TEXT}).status_code == 401
    invalid = client.post("/api/roasts", json={"userId": 1})
    assert invalid.status_code == 400
    assert "error" in invalid.json()


def test_provider_failure_is_a_sanitized_500_with_recorded_call(client: TestClient, adapters) -> None:
    user_id = _create_account(client)

    def fail(model_id, request):
        raise RuntimeError("upstream said: key sk-secret is invalid")

    adapters["openai"].responder = fail
    response = client.post("/api/cover-letters", json={"resumeText": RESUME_TEXT, "userId": user_id})

    assert response.status_code == 500
    assert response.json() == {"error": "openai request failed"}
    usage = client.get(f"/api/accounts/{user_id}/usage").json()
    assert usage["callCount"] == 1
    assert usage["calls"][0]["status"] == "failed"


def test_job_posting_extraction_and_summary(client: TestClient, adapters) -> None:
    user_id = _create_account(client)
    adapters["openai"].payload = {"title": "Backend Engineer", "keywords": ["python"]}
    job = client.post(
        "/api/job-postings/extract",
        json={"text": JOB_TEXT, "userId": user_id, "extractionMethod": "ai"},
    ).json()
    assert job["extractionMethod"] == "text"
    assert job["data"]["keywords"] == ["python"]

    adapters["openai"].payload = {"headline": "Backend role", "summary": "APIs in Python."}
    summary = client.post("/api/summaries/job-posting", json={"sourceId": job["artifactId"], "userId": user_id})
    assert summary.status_code == 200
    assert summary.json()["data"]["headline"] == "Backend role"

    missing = client.post("/api/summaries/resume", json={"sourceId": 999, "userId": user_id})
    assert missing.status_code == 404


def test_resume_history_lists_owned_extractions(client: TestClient) -> None:
    user_id = _create_account(client)
    client.post("/api/resumes/extract", data={"text": RESUME_TEXT, "userId": str(user_id), "extractionMethod": "basic"})

    history = client.get("/api/resumes", params={"userId": user_id}).json()
    assert len(history) == 1
    assert history[0]["kind"] == "resume"
    assert client.get("/api/resumes").status_code == 401


def test_artifacts_are_readable_only_by_their_owner(client: TestClient) -> None:
    owner_id = _create_account(client, email="owner@example.com")
    other_id = _create_account(client, email="other@example.com")
    created = client.post("/api/roasts", json={"resumeText": RESUME_TEXT, "userId": owner_id}).json()
    path = f"/api/artifacts/roast/{created['artifactId']}"

    assert client.get(path, params={"userId": owner_id}).status_code == 200
    assert client.get(path, params={"userId": other_id}).status_code == 404
    assert client.get(path).status_code == 401
