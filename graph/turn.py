import os
import time
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Callable
from langgraph.graph import StateGraph, START, END
from loguru import logger

from graph.state import TurnState
from graph.nodes.thread import wait_for_thread, add_message
from graph.nodes.run import start_run, poll_run, cancel_run
from graph.nodes.dispatch import dispatch_tools
from graph.nodes.reply import fetch_reply
from tools.assistant import ACTIVE_RUN_STATUSES, AssistantClient
from tools.dispatcher import ToolDispatcher
from tools.errors import MissingReplyError, RunFailedError, RunTimeoutError, ValidationError


@dataclass
class TurnSettings:
    """Timing budgets for one conversational turn."""
    drain_attempts: int = 20
    drain_interval: float = 1.5
    busy_retries: int = 3
    busy_backoff: float = 3.0
    poll_interval: float = 1.0
    max_poll_attempts: int = 45
    temperature: float = 0.3
    max_completion_tokens: int = 2000
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_env(cls) -> "TurnSettings":
        return cls(
            poll_interval=float(os.getenv("ASSISTANT_POLL_INTERVAL", "1.0")),
            max_poll_attempts=int(os.getenv("ASSISTANT_MAX_POLL_ATTEMPTS", "45")),
        )


def build_turn_workflow():
    """Build the assistant turn workflow."""
    workflow = StateGraph(TurnState)

    workflow.add_node("wait_for_thread", wait_for_thread)
    workflow.add_node("add_message", add_message)
    workflow.add_node("start_run", start_run)
    workflow.add_node("poll_run", poll_run)
    workflow.add_node("dispatch_tools", dispatch_tools)
    workflow.add_node("cancel_run", cancel_run)
    workflow.add_node("fetch_reply", fetch_reply)

    workflow.add_edge(START, "wait_for_thread")
    workflow.add_edge("wait_for_thread", "add_message")
    workflow.add_edge("add_message", "start_run")
    workflow.add_edge("start_run", "poll_run")

    def budget_left(state: TurnState, config) -> bool:
        return state.get("attempts", 0) < config["configurable"]["settings"].max_poll_attempts

    def after_poll(state: TurnState, config) -> str:
        status = state.get("status")
        if status == "requires_action":
            return "dispatch_tools"
        if status == "completed":
            return "fetch_reply"
        if status in ACTIVE_RUN_STATUSES:
            return "poll_run" if budget_left(state, config) else "cancel_run"
        logger.error(f"Assistant run failed with final status: {status}")
        return "end"

    def after_dispatch(state: TurnState, config) -> str:
        return "poll_run" if budget_left(state, config) else "cancel_run"

    workflow.add_conditional_edges(
        "poll_run",
        after_poll,
        {
            "dispatch_tools": "dispatch_tools",
            "fetch_reply": "fetch_reply",
            "poll_run": "poll_run",
            "cancel_run": "cancel_run",
            "end": END,
        }
    )
    workflow.add_conditional_edges(
        "dispatch_tools",
        after_dispatch,
        {"poll_run": "poll_run", "cancel_run": "cancel_run"}
    )

    workflow.add_edge("cancel_run", END)
    workflow.add_edge("fetch_reply", END)

    return workflow.compile()


class TurnOrchestrator:
    """Submits user turns to an assistant thread and returns the assistant's reply."""

    def __init__(
        self,
        assistant: AssistantClient,
        dispatcher: ToolDispatcher,
        settings: Optional[TurnSettings] = None,
    ):
        self.assistant = assistant
        self.dispatcher = dispatcher
        self.settings = settings or TurnSettings.from_env()
        self.workflow = build_turn_workflow()

    def submit_turn(
        self,
        thread_id: str,
        lead_id: Optional[str],
        message: str,
        file_ids: Optional[List[str]] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Run one conversational turn to completion.

        Args:
            thread_id: Assistant thread bound to the lead
            lead_id: Lead the conversation is about
            message: User text
            file_ids: Uploaded file ids to attach
            metadata: Message metadata (marks injected lead-context turns)

        Returns:
            {"messageId", "content", "runId", "toolOutputs"}

        Raises:
            RunTimeoutError: if the run outlives the polling budget
            RunFailedError: if the run ends failed, cancelled or expired
            MissingReplyError: if the run completed without an assistant message
        """
        if not thread_id or not message:
            raise ValidationError("Thread ID and message are required")

        logger.info(f"Sending message to thread {thread_id}")
        initial_state = {
            "thread_id": thread_id,
            "lead_id": lead_id,
            "message": message,
            "file_ids": list(file_ids or []),
            "metadata": metadata or {},
        }
        config = {
            "configurable": {
                "assistant": self.assistant,
                "dispatcher": self.dispatcher,
                "settings": self.settings,
            },
            # One step per poll plus one per tool round, with headroom for the fixed nodes
            "recursion_limit": 2 * self.settings.max_poll_attempts + 10,
        }

        result = self.workflow.invoke(initial_state, config=config)

        if result.get("timed_out"):
            raise RunTimeoutError("Assistant response timeout")
        if result.get("status") != "completed":
            raise RunFailedError(result.get("status"))
        if not result.get("reply_message_id"):
            raise MissingReplyError("No assistant response found")

        logger.info(f"Assistant run {result['run_id']} completed after {result.get('attempts', 0)} polls")
        return {
            "messageId": result["reply_message_id"],
            "content": result["reply"],
            "runId": result["run_id"],
            "toolOutputs": result.get("tool_outputs") or [],
        }
