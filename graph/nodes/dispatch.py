from langchain_core.runnables import RunnableConfig
from loguru import logger

from graph.state import TurnState
from tools.errors import CRMAssistantError


def dispatch_tools(state: TurnState, config: RunnableConfig) -> TurnState:
    """Run every pending tool call and submit the outputs as one batch."""
    assistant = config["configurable"]["assistant"]
    dispatcher = config["configurable"]["dispatcher"]
    tool_calls = state.get("tool_calls") or []

    logger.info(f"Assistant is requesting {len(tool_calls)} tool call(s)")
    outputs = dispatcher.dispatch_all(tool_calls, state.get("lead_id"))

    if outputs:
        try:
            assistant.submit_tool_outputs(state["thread_id"], state["run_id"], outputs)
            logger.info(f"Submitted {len(outputs)} tool outputs")
        except CRMAssistantError as e:
            # Polling continues; the run times out or fails on its own
            logger.error(f"Failed to submit tool outputs: {e}")

    return {
        "tool_calls": [],
        "tool_outputs": (state.get("tool_outputs") or []) + outputs,
    }
