import os
import sys
from typing import Dict, Any, List, Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tools.assistant import ACTIVE_RUN_STATUSES
from tools.errors import NotFoundError, ThreadBusyError, UpstreamError
from tools.leads import LeadManager


class FakeCRM:
    """In-memory stand-in for ZohoCRMClient that records every update."""

    def __init__(self, leads: Optional[List[Dict[str, Any]]] = None, fail_updates: bool = False):
        self.leads = {lead["id"]: dict(lead) for lead in leads or []}
        self.updates = []
        self.fail_updates = fail_updates

    def get_lead(self, lead_id: str) -> Dict[str, Any]:
        if lead_id not in self.leads:
            raise NotFoundError(f"Lead {lead_id} not found")
        return dict(self.leads[lead_id])

    def update_lead(self, lead_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_updates:
            raise UpstreamError("Failed to update lead: 500 - boom", status=500, body="boom")
        self.updates.append((lead_id, dict(fields)))
        lead = self.leads.get(lead_id)
        if lead is not None:
            if "Activity" in fields:
                lead["activity"] = fields["Activity"]
            if "cf_Thread_ID" in fields:
                lead["thread_id"] = fields["cf_Thread_ID"]
        return {"data": [{"code": "SUCCESS", "details": {"id": lead_id}}]}


class FakeAssistant:
    """
    Scripted stand-in for AssistantClient.

    Each created run walks through ``script`` one entry per status poll; an
    entry is a status string or a ``("requires_action", [tool calls])`` pair.
    The last status sticks once the script is exhausted.
    """

    def __init__(self, script=None, reply: str = "Hello from the assistant", reply_role: str = "assistant"):
        self.script = list(script or ["completed"])
        self.reply = reply
        self.reply_role = reply_role
        self.runs: List[Dict[str, Any]] = []
        self.calls: List[str] = []
        self.messages: List[Dict[str, Any]] = []
        self.created_runs: List[Dict[str, Any]] = []
        self.submitted: List[List[Dict[str, str]]] = []
        self.cancelled: List[str] = []
        self.busy_failures = 0
        self.list_runs_error: Optional[Exception] = None
        self.max_active_runs = 0

    def seed_active_run(self, polls_until_done: int) -> Dict[str, Any]:
        """Leave a run in progress that finishes after ``polls_until_done`` status checks."""
        run = {"id": f"run_{len(self.runs)}", "status": "in_progress", "remaining": polls_until_done,
               "script": [], "tool_calls": []}
        self.runs.append(run)
        return run

    def active_runs(self) -> List[Dict[str, Any]]:
        return [run for run in self.runs if run["status"] in ACTIVE_RUN_STATUSES]

    def list_runs(self, thread_id: str, limit: int = 5):
        self.calls.append("list_runs")
        if self.list_runs_error is not None:
            raise self.list_runs_error
        for run in self.runs:
            if run.get("remaining"):
                run["remaining"] -= 1
                if run["remaining"] == 0:
                    run["status"] = "completed"
        return [self._view(run) for run in self.runs]

    def add_message(self, thread_id, content, file_ids=None, metadata=None):
        self.calls.append("add_message")
        if self.busy_failures > 0:
            self.busy_failures -= 1
            raise ThreadBusyError(
                f"Can't add messages to {thread_id} while a run run_0 is active.", status=400
            )
        if self.active_runs():
            raise ThreadBusyError(f"Can't add messages to {thread_id} while a run is active.", status=400)
        message_id = f"msg_user_{len(self.messages)}"
        self.messages.append({
            "id": message_id,
            "content": content,
            "file_ids": list(file_ids or []),
            "metadata": metadata,
        })
        return message_id

    def create_run(self, thread_id, tools, instructions, temperature=0.3, max_completion_tokens=2000):
        self.calls.append("create_run")
        self.max_active_runs = max(self.max_active_runs, len(self.active_runs()) + 1)
        run = {"id": f"run_{len(self.runs)}", "status": "queued", "script": list(self.script), "tool_calls": []}
        self.runs.append(run)
        self.created_runs.append({
            "tools": tools,
            "instructions": instructions,
            "temperature": temperature,
            "max_completion_tokens": max_completion_tokens,
        })
        return self._view(run)

    def get_run(self, thread_id, run_id):
        self.calls.append("get_run")
        run = self._find(run_id)
        if run["script"]:
            step = run["script"].pop(0)
            if isinstance(step, tuple):
                run["status"], run["tool_calls"] = step
            else:
                run["status"], run["tool_calls"] = step, []
        return self._view(run)

    def submit_tool_outputs(self, thread_id, run_id, tool_outputs):
        self.calls.append("submit_tool_outputs")
        self.submitted.append(list(tool_outputs))

    def cancel_run(self, thread_id, run_id):
        self.calls.append("cancel_run")
        self._find(run_id)["status"] = "cancelled"
        self.cancelled.append(run_id)

    def latest_message(self, thread_id):
        self.calls.append("latest_message")
        return {"id": "msg_reply", "role": self.reply_role, "content": self.reply}

    def _find(self, run_id):
        return next(run for run in self.runs if run["id"] == run_id)

    @staticmethod
    def _view(run):
        return {"id": run["id"], "status": run["status"], "tool_calls": list(run["tool_calls"]), "last_error": None}


SAMPLE_LEADS = [
    {
        "id": "L1",
        "name": "Jane Smith",
        "company": "Acme Ltd",
        "email": "jane@acme.co.uk",
        "phone": "020 7946 0958",
        "activity": "Fresh",
        "thread_id": None,
    },
    {
        "id": "L2",
        "name": "Tom Brown",
        "company": "Brown & Co",
        "email": "tom@brownco.com",
        "phone": None,
        "activity": "Questionnaire Sent",
        "thread_id": "thread_existing",
    },
]


@pytest.fixture
def crm():
    return FakeCRM(SAMPLE_LEADS)


@pytest.fixture
def lead_manager(crm):
    return LeadManager(crm)
