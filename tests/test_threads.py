from unittest.mock import MagicMock

from tools.assistant import AssistantClient
from tools.errors import NotFoundError
from tools.threads import ThreadManager, is_context_message, lead_context_message


class PagedMessages:
    """Message store that pages like the provider: ``limit`` items in ``order``."""

    def __init__(self, messages):
        self.messages = messages

    def list_messages(self, thread_id, limit=100, order="desc"):
        ordered = self.messages if order == "asc" else list(reversed(self.messages))
        return ordered[:limit]


class TestThreadManager:
    """One conversation thread per lead."""

    def setup_method(self):
        self.assistant = MagicMock(spec=AssistantClient)
        self.assistant.create_thread.return_value = "thread_new"

    def test_reuses_existing_thread_without_context_turns(self, lead_manager):
        self.assistant.list_messages.return_value = [
            {"id": "m3", "role": "user", "content": "Chase him", "created_at": 1760000100, "metadata": {}},
            {"id": "m2", "role": "assistant", "content": "Tom is in Questionnaire Sent.", "created_at": 1760000005, "metadata": {}},
            {"id": "m1", "role": "user", "content": "Lead Record Information:\n\nName: Tom", "created_at": 1760000000, "metadata": {}},
        ]
        result = ThreadManager(self.assistant, lead_manager).open_thread("L2", "thread_existing")

        assert result["isExisting"] is True
        assert result["threadId"] == "thread_existing"
        assert [m["id"] for m in result["messages"]] == ["m2", "m3"]
        assert result["messages"][0]["timestamp"].startswith("2025-10-09")
        self.assistant.list_messages.assert_called_once_with("thread_existing", order="desc")
        self.assistant.create_thread.assert_not_called()

    def test_long_thread_keeps_newest_messages(self, lead_manager):
        provider = PagedMessages([
            {"id": f"m{i}", "role": "user" if i % 2 else "assistant", "content": f"message {i}",
             "created_at": 1760000000 + i, "metadata": {}}
            for i in range(150)
        ])
        ids = [m["id"] for m in ThreadManager(provider, lead_manager).load_transcript("thread_existing")]

        assert len(ids) == 100
        assert ids[0] == "m50"
        assert ids[-1] == "m149"

    def test_creates_and_binds_thread_when_missing(self, crm, lead_manager):
        result = ThreadManager(self.assistant, lead_manager).open_thread("L1")

        assert result == {"threadId": "thread_new", "messages": [], "isExisting": False}
        assert crm.updates == [("L1", {"cf_Thread_ID": "thread_new"})]

    def test_replaces_vanished_thread(self, crm, lead_manager):
        self.assistant.list_messages.side_effect = NotFoundError("No thread found with id 'thread_existing'")
        result = ThreadManager(self.assistant, lead_manager).open_thread("L2", "thread_existing")

        assert result["isExisting"] is False
        assert crm.updates == [("L2", {"cf_Thread_ID": "thread_new"})]


def test_context_messages_are_recognized():
    assert is_context_message({"content": "anything", "metadata": {"kind": "lead_context"}})
    assert is_context_message({"content": "This is a CRM management session where...", "metadata": {}})
    assert not is_context_message({"content": "What should I do next?", "metadata": {}})


def test_lead_context_message():
    text = lead_context_message({"id": "L1", "name": "Jane Smith", "company": "Acme Ltd", "email": "jane@acme.co.uk"})

    assert text.startswith("Lead Record Information:")
    assert "Phone: Not provided" in text
    assert "Current Activity: No activity set" in text
    assert "Lead ID: L1" in text
