from langchain_core.runnables import RunnableConfig
from loguru import logger

from graph.state import TurnState


def fetch_reply(state: TurnState, config: RunnableConfig) -> TurnState:
    """Read the newest thread message; only an assistant-authored one counts as the reply."""
    assistant = config["configurable"]["assistant"]
    message = assistant.latest_message(state["thread_id"])

    if not message or message.get("role") != "assistant":
        logger.error(f"No assistant response found on thread {state['thread_id']}")
        return {"reply": None, "reply_message_id": None}

    logger.info(f"Assistant responded to thread {state['thread_id']}")
    return {
        "reply": message.get("content") or "No response",
        "reply_message_id": message["id"],
    }
