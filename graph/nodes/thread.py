from langchain_core.runnables import RunnableConfig
from loguru import logger

from graph.state import TurnState
from tools.assistant import ACTIVE_RUN_STATUSES
from tools.errors import CRMAssistantError, ThreadBusyError


def wait_for_thread(state: TurnState, config: RunnableConfig) -> TurnState:
    """Wait out any run still active on the thread before appending a message."""
    assistant = config["configurable"]["assistant"]
    settings = config["configurable"]["settings"]
    thread_id = state["thread_id"]

    for attempt in range(1, settings.drain_attempts + 1):
        try:
            runs = assistant.list_runs(thread_id)
        except CRMAssistantError as e:
            # Run status is advisory; an unreachable status endpoint must not block the turn
            logger.warning(f"Error checking thread status, proceeding anyway: {e}")
            return {"drained": False}

        active = [run for run in runs if run["status"] in ACTIVE_RUN_STATUSES]
        if not active:
            logger.info(f"Thread {thread_id} is ready for new messages")
            return {"drained": True}

        logger.info(f"Waiting for {len(active)} active run(s) to complete... (attempt {attempt})")
        settings.sleep(settings.drain_interval)

    logger.warning("Timeout waiting for thread to be ready, proceeding anyway")
    return {"drained": False}


def add_message(state: TurnState, config: RunnableConfig) -> TurnState:
    """Append the user message, retrying while the provider reports the thread busy."""
    assistant = config["configurable"]["assistant"]
    settings = config["configurable"]["settings"]
    file_ids = state.get("file_ids") or []

    if file_ids:
        logger.info(f"Message includes {len(file_ids)} file attachment(s): {', '.join(file_ids)}")

    for attempt in range(1, settings.busy_retries + 1):
        try:
            message_id = assistant.add_message(
                state["thread_id"],
                state["message"],
                file_ids=file_ids,
                metadata=state.get("metadata"),
            )
            logger.info(f"Message added to thread {state['thread_id']}")
            return {"user_message_id": message_id}
        except ThreadBusyError as e:
            logger.warning(f"Failed to add message (attempt {attempt}): {e}")
            if attempt == settings.busy_retries:
                raise
            logger.info(f"Thread still busy, waiting {settings.busy_backoff}s and retrying...")
            settings.sleep(settings.busy_backoff)

    raise ThreadBusyError("Failed to add message to thread after all retries")
