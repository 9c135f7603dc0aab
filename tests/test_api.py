from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

import app as app_module
from conftest import FakeCRM, SAMPLE_LEADS
from tools.assistant import AssistantClient
from tools.errors import RunTimeoutError
from tools.leads import LeadManager
from tools.outlook import OutlookMailSearch
from tools.dispatcher import ToolDispatcher


@pytest.fixture
def services(monkeypatch):
    """Swap the module-level services for in-memory fakes."""
    crm = FakeCRM(SAMPLE_LEADS)
    leads = LeadManager(crm)
    orchestrator = MagicMock()
    threads = MagicMock()

    monkeypatch.setattr(app_module, "crm", crm)
    monkeypatch.setattr(app_module, "leads", leads)
    monkeypatch.setattr(app_module, "orchestrator", orchestrator)
    monkeypatch.setattr(app_module, "threads", threads)
    return SimpleNamespace(crm=crm, leads=leads, orchestrator=orchestrator, threads=threads)


@pytest.fixture
def client():
    return TestClient(app_module.app)


class TestActivityEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_next_activity(self, client):
        response = client.post("/activity/next", json={"currentActivity": "Fresh"})
        body = response.json()

        assert response.status_code == 200
        assert body["success"] is True
        assert body["nextActivity"] == "Attempting to make contact with lead"
        assert body["description"] == "Actively trying to reach the lead"

    def test_next_activity_at_end_of_pipeline(self, client):
        body = client.post("/activity/next", json={"currentActivity": "See Case Notes"}).json()
        assert body["success"] is False
        assert "cannot be progressed" in body["message"]

    def test_next_activity_with_non_string_label(self, client):
        response = client.post("/activity/next", json={"currentActivity": 5})
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_next_activity_requires_input(self, client):
        response = client.post("/activity/next", json={})
        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Invalid request",
            "message": "Current activity is required",
        }

    def test_invalid_json(self, client):
        response = client.post("/activity/next", content=b"{oops", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_activity_action(self, client):
        body = client.post("/activity/action", json={"activity": "Questionnaire Chasing"}).json()
        assert body["nextAction"] == "Send follow-up email about the questionnaire"
        assert body["actionQuestion"].startswith("Should I send a follow-up email")


class TestLeadEndpoints:

    def test_apply_stage_change(self, client, services):
        response = client.post("/leads/L2/activity", json={"newActivity": "Questionnaire Chasing"})
        body = response.json()

        assert response.status_code == 200
        assert body["previousActivity"] == "Questionnaire Sent"
        assert body["newActivity"] == "Questionnaire Chasing"
        assert services.crm.updates == [("L2", {"Activity": "Questionnaire Chasing"})]

    def test_unknown_lead_is_404(self, client, services):
        response = client.post("/leads/nope/activity", json={"newActivity": "Questionnaire Chasing"})
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_non_stage_is_400(self, client, services):
        response = client.post("/leads/L1/activity", json={"newActivity": "Lost Lead"})
        assert response.status_code == 400

    def test_manual_override(self, client, services):
        response = client.post("/leads/L1/activity/manual", json={"newActivity": "Lost Lead", "reason": "No budget"})
        body = response.json()

        assert response.status_code == 200
        assert body["previous_activity"] == "Fresh"
        assert body["new_activity"] == "Lost Lead"

    def test_get_lead(self, client, services):
        body = client.get("/leads/L1").json()
        assert body["lead"]["email"] == "jane@acme.co.uk"


class TestChatEndpoints:

    def test_message_turn(self, client, services):
        services.orchestrator.submit_turn.return_value = {
            "messageId": "msg_1", "content": "Shall I send the quote?", "runId": "run_1", "toolOutputs": [],
        }
        response = client.post("/chat/message", json={"threadId": "thread_1", "leadId": "L1", "message": "Hi"})

        assert response.json() == {"success": True, "messageId": "msg_1", "content": "Shall I send the quote?"}
        services.orchestrator.submit_turn.assert_called_once_with("thread_1", "L1", "Hi", [])

    def test_message_timeout_is_500(self, client, services):
        services.orchestrator.submit_turn.side_effect = RunTimeoutError("Assistant response timeout")
        response = client.post("/chat/message", json={"threadId": "thread_1", "leadId": "L1", "message": "Hi"})

        assert response.status_code == 500
        assert response.json()["message"] == "Assistant response timeout"

    def test_new_thread_is_primed(self, client, services):
        services.threads.open_thread.return_value = {"threadId": "thread_new", "messages": [], "isExisting": False}
        services.orchestrator.submit_turn.return_value = {
            "messageId": "msg_1", "content": "Jane is a fresh lead.", "runId": "run_1", "toolOutputs": [],
        }
        body = client.post("/chat/thread", json={"leadId": "L1"}).json()

        services.threads.open_thread.assert_called_once_with("L1", None)
        args = services.orchestrator.submit_turn.call_args[0]
        assert args[0] == "thread_new"
        assert args[2].startswith("Lead Record Information:")
        assert args[4] == {"kind": "lead_context"}
        assert body["threadId"] == "thread_new"
        assert body["messages"][0]["content"] == "Jane is a fresh lead."

    def test_existing_thread_is_not_primed(self, client, services):
        services.threads.open_thread.return_value = {"threadId": "thread_existing", "messages": [], "isExisting": True}
        body = client.post("/chat/thread", json={"leadId": "L2"}).json()

        services.threads.open_thread.assert_called_once_with("L2", "thread_existing")
        services.orchestrator.submit_turn.assert_not_called()
        assert body["isExisting"] is True

    def test_upload_rejects_unsupported_type(self, client, monkeypatch):
        monkeypatch.setattr(app_module, "assistant", AssistantClient(api_key="sk-test", assistant_id="asst_1", client=MagicMock()))
        response = client.post("/chat/files", files={"file": ("run.exe", b"MZ", "application/octet-stream")})
        assert response.status_code == 400

    def test_upload(self, client, monkeypatch):
        openai_client = MagicMock()
        openai_client.files.create.return_value = SimpleNamespace(
            id="file-1", filename="notes.txt", bytes=5, purpose="assistants", status="processed"
        )
        monkeypatch.setattr(app_module, "assistant", AssistantClient(api_key="sk-test", assistant_id="asst_1", client=openai_client))
        body = client.post("/chat/files", files={"file": ("notes.txt", b"hello", "text/plain")}).json()

        assert body["success"] is True
        assert body["fileId"] == "file-1"
        openai_client.files.create.assert_called_once_with(file=("notes.txt", b"hello"), purpose="assistants")


class TestEmailEndpoints:

    def test_search_without_mailbox_auth_is_soft_failure(self, client, services, monkeypatch):
        mail = OutlookMailSearch(token_provider=lambda: None)
        monkeypatch.setattr(app_module, "dispatcher", ToolDispatcher(services.leads, mail, MagicMock(), MagicMock()))
        response = client.post("/emails/search", json={"senderEmail": "jane@acme.co.uk", "timeAfter": "yesterday"})

        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_search_requires_sender(self, client, services):
        response = client.post("/emails/search", json={"timeAfter": "yesterday"})
        assert response.status_code == 400
