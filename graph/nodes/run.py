from langchain_core.runnables import RunnableConfig
from loguru import logger

from graph.state import TurnState
from tools.catalog import TOOLS, run_instructions
from tools.errors import CRMAssistantError


def start_run(state: TurnState, config: RunnableConfig) -> TurnState:
    """Start a run with the full tool catalog and workflow instructions."""
    assistant = config["configurable"]["assistant"]
    settings = config["configurable"]["settings"]

    run = assistant.create_run(
        state["thread_id"],
        tools=TOOLS,
        instructions=run_instructions(len(state.get("file_ids") or [])),
        temperature=settings.temperature,
        max_completion_tokens=settings.max_completion_tokens,
    )
    return {
        "run_id": run["id"],
        "status": run["status"],
        "attempts": 0,
        "tool_calls": [],
        "tool_outputs": [],
        "timed_out": False,
    }


def poll_run(state: TurnState, config: RunnableConfig) -> TurnState:
    assistant = config["configurable"]["assistant"]
    settings = config["configurable"]["settings"]

    settings.sleep(settings.poll_interval)
    run = assistant.get_run(state["thread_id"], state["run_id"])
    attempts = state.get("attempts", 0) + 1

    if attempts % 10 == 0:
        logger.info(f"Assistant still processing... ({attempts} polls, status: {run['status']})")

    return {
        "status": run["status"],
        "attempts": attempts,
        "tool_calls": run["tool_calls"],
        "last_error": run.get("last_error"),
    }


def cancel_run(state: TurnState, config: RunnableConfig) -> TurnState:
    """Best-effort cancel once the polling budget is spent."""
    assistant = config["configurable"]["assistant"]
    logger.error(f"Assistant timeout after {state.get('attempts', 0)} attempts")

    try:
        assistant.cancel_run(state["thread_id"], state["run_id"])
        logger.info("Cancelled long-running assistant run")
    except CRMAssistantError as e:
        logger.warning(f"Failed to cancel run: {e}")
    return {"timed_out": True}
