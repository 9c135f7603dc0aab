from typing import TypedDict, Optional, List, Dict, Any

class TurnState(TypedDict, total=False):
    """State shape for one conversational turn on an assistant thread."""
    thread_id: str
    lead_id: Optional[str]
    message: str                     # user text appended to the thread
    file_ids: List[str]              # uploaded files attached to the message
    metadata: Dict[str, str]         # message metadata, e.g. lead-context marker
    drained: bool                    # thread had no active run when we appended
    user_message_id: str
    run_id: str
    status: str                      # last provider run status
    last_error: Optional[str]
    attempts: int                    # status polls spent on this run
    tool_calls: List[Dict[str, Any]] # pending calls from the latest pause
    tool_outputs: List[Dict[str, str]]
    timed_out: bool
    reply: Optional[str]
    reply_message_id: Optional[str]
