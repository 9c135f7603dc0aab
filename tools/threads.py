from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
from loguru import logger

from tools.assistant import AssistantClient
from tools.errors import CRMAssistantError
from tools.leads import LeadManager

CONTEXT_METADATA = {"kind": "lead_context"}

# Threads created before messages carried metadata can only be recognized by their text
LEGACY_CONTEXT_MARKERS = (
    "Lead Record Information:",
    "IMPORTANT: Based on this lead's current activity status",
    "This is a CRM management session",
)


def lead_context_message(lead: Dict[str, Any]) -> str:
    """Build the priming message sent as the first turn of a new lead thread."""
    return f"""Lead Record Information:

Name: {lead.get('name')}
Company: {lead.get('company')}
Email: {lead.get('email')}
Phone: {lead.get('phone') or 'Not provided'}
Current Activity: {lead.get('activity') or 'No activity set'}
Lead ID: {lead.get('id')}

IMPORTANT: Based on this lead's current activity status, please:
1. Greet the user and analyze the current activity status
2. Suggest the next logical action based on the workflow
3. Ask for confirmation before proceeding with any action
4. Guide the user through the complete lead management process

This is a CRM management session where you should proactively guide the workflow based on the lead's current status."""


def is_context_message(message: Dict[str, Any]) -> bool:
    if (message.get("metadata") or {}).get("kind") == CONTEXT_METADATA["kind"]:
        return True
    content = message.get("content") or ""
    return any(marker in content for marker in LEGACY_CONTEXT_MARKERS)


def transcript_entry(message: Dict[str, Any]) -> Dict[str, Any]:
    created = message.get("created_at")
    timestamp = datetime.fromtimestamp(created, tz=timezone.utc).isoformat() if created else None
    return {
        "id": message.get("id"),
        "role": message.get("role"),
        "content": message.get("content") or "",
        "timestamp": timestamp,
    }


class ThreadManager:
    """Binds one conversation thread to each lead."""

    def __init__(self, assistant: AssistantClient, leads: LeadManager):
        self.assistant = assistant
        self.leads = leads

    def open_thread(self, lead_id: str, existing_thread_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Reuse the lead's thread when it still exists, otherwise create one.

        Args:
            lead_id: Lead the conversation belongs to
            existing_thread_id: Thread stored on the lead, if any

        Returns:
            {"threadId", "messages", "isExisting"}; messages exclude the
            injected lead-context turns
        """
        if existing_thread_id:
            logger.info(f"Checking existing thread: {existing_thread_id}")
            try:
                messages = self.load_transcript(existing_thread_id)
                logger.info(f"Using existing thread {existing_thread_id} with {len(messages)} filtered messages")
                return {"threadId": existing_thread_id, "messages": messages, "isExisting": True}
            except CRMAssistantError as e:
                logger.warning(f"Existing thread {existing_thread_id} not usable, creating new one: {e}")

        logger.info(f"Creating new thread for lead: {lead_id}")
        thread_id = self.assistant.create_thread()
        self.leads.bind_thread(lead_id, thread_id)
        return {"threadId": thread_id, "messages": [], "isExisting": False}

    def load_transcript(self, thread_id: str) -> List[Dict[str, Any]]:
        """The newest page of the thread, oldest first, without context turns."""
        messages = self.assistant.list_messages(thread_id, order="desc")
        return [transcript_entry(m) for m in reversed(messages) if not is_context_message(m)]
