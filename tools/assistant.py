import os
from pathlib import PurePath
from typing import Dict, Any, List, Optional
from loguru import logger
from openai import (
    OpenAI,
    APIConnectionError,
    APIStatusError,
    AuthenticationError,
    BadRequestError,
    NotFoundError as OpenAINotFoundError,
)

from tools.errors import AuthRequiredError, NotFoundError, ThreadBusyError, UpstreamError, ValidationError

ACTIVE_RUN_STATUSES = ("queued", "in_progress", "requires_action", "cancelling")
ALLOWED_UPLOAD_EXTENSIONS = (".pdf", ".doc", ".docx", ".txt", ".csv", ".rtf", ".md")
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def is_thread_busy(error: Exception) -> bool:
    """True if a provider error says a run is still active on the thread."""
    text = str(error)
    return "while a run" in text and "is active" in text


class AssistantClient:
    """Thin wrapper over the OpenAI Assistants threads/runs API returning plain dicts."""

    def __init__(self, api_key: Optional[str] = None, assistant_id: Optional[str] = None, client: Optional[OpenAI] = None):
        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY")
        self.assistant_id = assistant_id if assistant_id is not None else os.getenv("OPENAI_ASSISTANT_ID")
        self._client = client

        if not self.api_key or not self.assistant_id:
            logger.warning("OpenAI assistant configuration missing, chat endpoints are disabled")

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise AuthRequiredError("OpenAI configuration missing")
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def create_thread(self) -> str:
        try:
            thread = self.client.beta.threads.create()
        except Exception as e:
            raise _translate(e, "Failed to create thread") from e
        logger.info(f"Created new thread: {thread.id}")
        return thread.id

    def list_runs(self, thread_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        try:
            page = self.client.beta.threads.runs.list(thread_id=thread_id, limit=limit)
        except Exception as e:
            raise _translate(e, f"Failed to list runs on thread {thread_id}") from e
        return [_run_dict(run) for run in page.data]

    def add_message(
        self,
        thread_id: str,
        content: str,
        file_ids: Optional[List[str]] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Append a user message to a thread.

        Raises:
            ThreadBusyError: if a run is still active on the thread
            UpstreamError: for any other provider failure
        """
        params: Dict[str, Any] = {"role": "user", "content": content}
        if file_ids:
            params["attachments"] = [
                {"file_id": file_id, "tools": [{"type": "file_search"}]} for file_id in file_ids
            ]
        if metadata:
            params["metadata"] = metadata

        try:
            message = self.client.beta.threads.messages.create(thread_id=thread_id, **params)
        except BadRequestError as e:
            if is_thread_busy(e):
                raise ThreadBusyError(str(e), status=e.status_code, body=str(e.body or "")) from e
            raise _translate(e, "Failed to add message to thread") from e
        except Exception as e:
            raise _translate(e, "Failed to add message to thread") from e
        return message.id

    def create_run(
        self,
        thread_id: str,
        tools: List[Dict[str, Any]],
        instructions: str,
        temperature: float = 0.3,
        max_completion_tokens: int = 2000,
    ) -> Dict[str, Any]:
        if not self.assistant_id:
            raise AuthRequiredError("OpenAI configuration missing")
        try:
            run = self.client.beta.threads.runs.create(
                thread_id=thread_id,
                assistant_id=self.assistant_id,
                tools=tools,
                instructions=instructions,
                temperature=temperature,
                max_completion_tokens=max_completion_tokens,
            )
        except Exception as e:
            raise _translate(e, "Failed to run assistant") from e
        logger.info(f"Started assistant run: {run.id}")
        return _run_dict(run)

    def get_run(self, thread_id: str, run_id: str) -> Dict[str, Any]:
        try:
            run = self.client.beta.threads.runs.retrieve(run_id=run_id, thread_id=thread_id)
        except Exception as e:
            raise _translate(e, "Failed to check run status") from e
        return _run_dict(run)

    def submit_tool_outputs(self, thread_id: str, run_id: str, tool_outputs: List[Dict[str, str]]) -> None:
        try:
            self.client.beta.threads.runs.submit_tool_outputs(
                run_id=run_id,
                thread_id=thread_id,
                tool_outputs=tool_outputs,
            )
        except Exception as e:
            raise _translate(e, "Failed to submit tool outputs") from e

    def cancel_run(self, thread_id: str, run_id: str) -> None:
        try:
            self.client.beta.threads.runs.cancel(run_id=run_id, thread_id=thread_id)
        except Exception as e:
            raise _translate(e, f"Failed to cancel run {run_id}") from e

    def latest_message(self, thread_id: str) -> Optional[Dict[str, Any]]:
        messages = self.list_messages(thread_id, limit=1, order="desc")
        return messages[0] if messages else None

    def list_messages(self, thread_id: str, limit: int = 100, order: str = "desc") -> List[Dict[str, Any]]:
        """List thread messages; raises NotFoundError if the thread is gone."""
        try:
            page = self.client.beta.threads.messages.list(thread_id=thread_id, limit=limit, order=order)
        except Exception as e:
            raise _translate(e, f"Failed to list messages on thread {thread_id}") from e
        return [_message_dict(message) for message in page.data]

    def upload_file(self, filename: str, content: bytes) -> Dict[str, Any]:
        """
        Upload a document so it can be attached to a chat message.

        Raises:
            ValidationError: for unsupported extensions or files over 10MB
        """
        extension = PurePath(filename or "").suffix.lower()
        if extension not in ALLOWED_UPLOAD_EXTENSIONS:
            raise ValidationError("File type not supported")
        if len(content) > MAX_UPLOAD_BYTES:
            raise ValidationError("File size must be less than 10MB")

        try:
            uploaded = self.client.files.create(file=(filename, content), purpose="assistants")
        except Exception as e:
            raise _translate(e, "Failed to upload file") from e

        logger.info(f"Uploaded file {filename} as {uploaded.id} ({uploaded.bytes} bytes)")
        return {
            "fileId": uploaded.id,
            "filename": uploaded.filename,
            "bytes": uploaded.bytes,
            "purpose": uploaded.purpose,
            "status": uploaded.status,
        }


def _translate(error: Exception, action: str) -> Exception:
    """Map an OpenAI SDK exception onto the service error taxonomy."""
    if isinstance(error, AuthenticationError):
        return AuthRequiredError(f"{action}: OpenAI rejected the API key")
    if isinstance(error, OpenAINotFoundError):
        return NotFoundError(f"{action}: {error}")
    if isinstance(error, APIStatusError):
        return UpstreamError(f"{action}: {error.status_code} - {error}", status=error.status_code, body=str(error.body or ""))
    if isinstance(error, APIConnectionError):
        return UpstreamError(f"{action}: OpenAI unreachable")
    if isinstance(error, (AuthRequiredError, UpstreamError, NotFoundError)):
        return error
    return UpstreamError(f"{action}: {error}")


def _run_dict(run: Any) -> Dict[str, Any]:
    tool_calls = []
    required = getattr(run, "required_action", None)
    if required is not None and required.submit_tool_outputs is not None:
        for call in required.submit_tool_outputs.tool_calls:
            tool_calls.append({
                "id": call.id,
                "name": call.function.name,
                "arguments": call.function.arguments,
            })

    last_error = getattr(run, "last_error", None)
    return {
        "id": run.id,
        "status": run.status,
        "tool_calls": tool_calls,
        "last_error": last_error.message if last_error is not None else None,
    }


def _message_dict(message: Any) -> Dict[str, Any]:
    text = ""
    for part in message.content or []:
        if getattr(part, "type", None) == "text":
            text = part.text.value
            break
    return {
        "id": message.id,
        "role": message.role,
        "content": text,
        "created_at": message.created_at,
        "metadata": dict(message.metadata or {}),
    }
