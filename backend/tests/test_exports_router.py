"""
API Tests for the export and health endpoints

Tests:
- POST /api/v1/work-plans/export/docx - DOCX download of a work plan
- GET / and GET /api/v1/health - Health checks

Usage:
    cd backend && pytest tests/test_exports_router.py -v
"""

import pytest
import sys
import os
import io

from docx import Document
from fastapi.testclient import TestClient

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.main import app
from app.models.plan import PlanData
from app.routers.exports import _content_disposition, make_plan_slug
from app.services.docx_export_service import DocxExportService
from docx_factories import all_paragraph_texts, make_work_plan_template

EXPORT_URL = "/api/v1/work-plans/export/docx"
DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def template_env(tmp_path, monkeypatch):
    path = tmp_path / "work_plan_template.docx"
    path.write_bytes(make_work_plan_template())
    monkeypatch.setenv("WORK_PLAN_TEMPLATE_PATH", str(path))
    return path


@pytest.fixture
def fake_generator(monkeypatch):
    monkeypatch.setattr(
        DocxExportService,
        "generate_work_plan_docx",
        staticmethod(lambda plan: b"PK fake docx"),
    )


# ============================================================================
# SLUG / FILENAME
# ============================================================================

class TestPlanSlug:

    @pytest.mark.parametrize("nickname,name,expected", [
        ("Meu Projeto", "Ignorado", "meu-projeto"),
        ("", "Projeto de P&D 2025", "projeto-de-pd-2025"),
        ("  ", "Ação Integrada", "ação-integrada"),
        ("", "", "plano"),
        ("!!!", "", "plano"),
        ("a  --  b", "", "a-b"),
    ])
    def test_slug(self, nickname, name, expected):
        plan = PlanData(project_nickname=nickname, project_name=name)
        assert make_plan_slug(plan) == expected

    def test_slug_truncated(self):
        plan = PlanData(project_name="x" * 100)
        assert len(make_plan_slug(plan)) == 60

    def test_ascii_content_disposition(self):
        assert _content_disposition("plano-a.docx") == 'attachment; filename="plano-a.docx"'

    def test_non_ascii_content_disposition(self):
        header = _content_disposition("plano-ação.docx")
        assert 'filename="plano-acao.docx"' in header
        assert "filename*=UTF-8''plano-a%C3%A7%C3%A3o.docx" in header


# ============================================================================
# EXPORT ENDPOINT
# ============================================================================

class TestExportEndpoint:

    def test_download_headers(self, client, fake_generator):
        response = client.post(EXPORT_URL, json={"projectNickname": "Meu Projeto"})
        assert response.status_code == 200
        assert response.headers["content-type"] == DOCX_MEDIA_TYPE
        assert response.headers["content-disposition"] == 'attachment; filename="plano-meu-projeto.docx"'
        assert response.content == b"PK fake docx"

    def test_empty_body_is_a_valid_plan(self, client, fake_generator):
        response = client.post(EXPORT_URL, json={})
        assert response.status_code == 200
        assert "plano-plano.docx" in response.headers["content-disposition"]

    @pytest.mark.parametrize("body", [
        {"trlMrlLevel": 12},
        {"activities": "not a list"},
        {"scheduleOverrides": [{"activityIndex": 0, "month": 0}]},
        {"financial": {"monthlyDistribution": {"yachts": [1]}}},
    ])
    def test_invalid_body_rejected(self, client, fake_generator, body):
        assert client.post(EXPORT_URL, json=body).status_code == 422

    def test_generation_failure_returns_500(self, client, monkeypatch):
        def boom(plan):
            raise RuntimeError("/secret/path/template.docx exploded")

        monkeypatch.setattr(DocxExportService, "generate_work_plan_docx", staticmethod(boom))
        response = client.post(EXPORT_URL, json={})
        assert response.status_code == 500
        detail = response.json()["detail"]
        assert "secret" not in detail
        assert detail == "work plan DOCX export failed. Please try again or contact support."

    def test_missing_template_returns_500(self, client, tmp_path, monkeypatch):
        monkeypatch.setenv("WORK_PLAN_TEMPLATE_PATH", str(tmp_path / "missing.docx"))
        assert client.post(EXPORT_URL, json={}).status_code == 500

    def test_real_export(self, client, template_env):
        response = client.post(EXPORT_URL, json={"projectName": "Projeto Real"})
        assert response.status_code == 200
        assert "Projeto: Projeto Real" in all_paragraph_texts(response.content)
        Document(io.BytesIO(response.content))


# ============================================================================
# HEALTH
# ============================================================================

class TestHealth:

    def test_root(self, client):
        assert client.get("/").json() == {"status": "ok", "message": "Work Plan Export API is running"}

    def test_health_with_template(self, client, template_env):
        body = client.get("/api/v1/health").json()
        assert body["status"] == "healthy"
        assert body["services"]["template"] == "available"

    def test_health_without_template(self, client, tmp_path, monkeypatch):
        monkeypatch.setenv("WORK_PLAN_TEMPLATE_PATH", str(tmp_path / "missing.docx"))
        body = client.get("/api/v1/health").json()
        assert body["status"] == "unhealthy"
        assert body["mode"] == "degraded"
        assert "template" in body["degraded"]
