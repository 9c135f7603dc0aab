import os
import time
from datetime import datetime, timezone
from typing import Dict, Any
from fastapi import FastAPI, Request, UploadFile, File
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from loguru import logger
from dotenv import load_dotenv

# Load environment variables before any client reads them
load_dotenv()

from graph.turn import TurnOrchestrator
from tools.activity import (
    board_column,
    confirmation_question,
    description,
    is_progressable,
    next_stage,
    recommended_action,
)
from tools.assistant import AssistantClient
from tools.companies_house import CompaniesHouseClient
from tools.dispatcher import ToolDispatcher
from tools.errors import CRMAssistantError, NotFoundError, ValidationError
from tools.leads import LeadManager
from tools.mailer import EmailSender
from tools.outlook import OutlookMailSearch
from tools.threads import CONTEXT_METADATA, ThreadManager, lead_context_message
from tools.zoho import ZohoCRMClient

# Configure logging
logger.add("logs/app.log", rotation="1 day", retention="7 days", level="INFO")

# Initialize FastAPI app
app = FastAPI(
    title="Lead Workflow Assistant",
    description="CRM lead pipeline with an AI assistant that drafts emails and moves leads through the workflow",
    version="1.0.0"
)

# Service wiring
crm = ZohoCRMClient()
leads = LeadManager(crm)
mail = OutlookMailSearch()
mailer = EmailSender(leads)
companies = CompaniesHouseClient()
assistant = AssistantClient()
dispatcher = ToolDispatcher(leads, mail, mailer, companies)
orchestrator = TurnOrchestrator(assistant, dispatcher)
threads = ThreadManager(assistant, leads)


async def read_json(req: Request) -> Dict[str, Any]:
    try:
        payload = await req.json()
    except ValueError as e:
        raise ValidationError(f"Request body must be JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


@app.get("/health")
def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": "1.0.0",
        "services": {
            "crm": "configured" if crm.token_provider() else "missing_token",
            "assistant": "configured" if assistant.api_key and assistant.assistant_id else "disabled",
            "mail_search": "configured" if mail.token_provider() else "missing_token",
            "email_transport": "webhook" if mailer.webhook_url else "mock",
            "company_registry": "configured" if companies.api_key else "disabled",
            "workflow": "ready"
        }
    }


@app.post("/chat/thread")
async def open_chat_thread(req: Request):
    """
    Open the conversation thread for a lead, creating and priming it if needed.

    Expected payload:
    {
        "leadId": "4876876000000624001",
        "existingThreadId": "thread_abc123"   (optional)
    }
    """
    payload = await read_json(req)
    lead_id = payload.get("leadId")
    if not lead_id:
        raise ValidationError("Lead ID is required")

    lead = await run_in_threadpool(crm.get_lead, lead_id)
    existing = payload.get("existingThreadId") or lead.get("thread_id")
    result = await run_in_threadpool(threads.open_thread, lead_id, existing)

    if not result["isExisting"]:
        try:
            reply = await run_in_threadpool(
                orchestrator.submit_turn,
                result["threadId"],
                lead_id,
                lead_context_message(lead),
                None,
                CONTEXT_METADATA,
            )
            result["messages"].append({
                "id": reply["messageId"],
                "role": "assistant",
                "content": reply["content"],
                "timestamp": datetime.now(timezone.utc).isoformat(),
            })
        except CRMAssistantError as e:
            logger.error(f"Failed to send lead record to thread {result['threadId']}: {e}")

    return {"success": True, **result}


@app.post("/chat/message")
async def send_chat_message(req: Request):
    """
    Submit one user turn and wait for the assistant's reply.

    Expected payload:
    {
        "threadId": "thread_abc123",
        "message": "Any reply from this lead since last Thursday?",
        "leadId": "4876876000000624001",
        "fileIds": ["file-xyz"]   (optional)
    }
    """
    payload = await read_json(req)
    reply = await run_in_threadpool(
        orchestrator.submit_turn,
        payload.get("threadId"),
        payload.get("leadId"),
        payload.get("message"),
        payload.get("fileIds") or [],
    )
    return {"success": True, "messageId": reply["messageId"], "content": reply["content"]}


@app.post("/chat/files")
async def upload_chat_file(file: UploadFile = File(...)):
    """Upload a document the user wants to discuss with the assistant."""
    content = await file.read()
    uploaded = await run_in_threadpool(assistant.upload_file, file.filename, content)
    return {"success": True, **uploaded}


@app.post("/activity/next")
async def get_next_activity(req: Request):
    """Look up the stage that follows a lead's current activity."""
    payload = await read_json(req)
    current = payload.get("currentActivity")
    if not current:
        raise ValidationError("Current activity is required")

    if not is_progressable(current):
        return {
            "success": False,
            "message": f'Activity "{current}" cannot be progressed further or is not in the standard workflow.',
        }

    following = next_stage(current)
    return {
        "success": True,
        "currentActivity": current,
        "nextActivity": following.value,
        "description": description(following),
        "column": board_column(following.value),
        "message": f"Next activity: {following.value}",
    }


@app.post("/activity/action")
async def get_activity_action(req: Request):
    """Recommended action and confirmation question for an activity."""
    payload = await read_json(req)
    activity = payload.get("activity")
    if not activity:
        raise ValidationError("Activity is required")

    action = recommended_action(activity)
    question = confirmation_question(activity)
    if not action or not question:
        return {"success": False, "message": f'No recommended action found for activity "{activity}".'}

    return {
        "success": True,
        "activity": activity,
        "nextAction": action,
        "actionQuestion": question,
        "description": description(activity),
        "message": f"Recommended action: {action}",
    }


@app.post("/leads/{lead_id}/activity")
async def update_lead_activity(lead_id: str, req: Request):
    """Move a lead to a pipeline stage."""
    payload = await read_json(req)
    if not payload.get("newActivity"):
        raise ValidationError("Lead ID and new activity are required")

    change = await run_in_threadpool(
        leads.apply_stage_change, lead_id, payload["newActivity"], payload.get("reason")
    )
    return {
        "success": True,
        "message": (
            f'Lead activity updated successfully from "{change.previous_activity or "None"}" '
            f'to "{change.new_activity}"'
        ),
        "previousActivity": change.previous_activity,
        "newActivity": change.new_activity,
        "leadName": change.lead_name,
        "reason": change.reason,
    }


@app.post("/leads/{lead_id}/activity/manual")
async def change_lead_activity_manual(lead_id: str, req: Request):
    """Set any activity label on a lead."""
    payload = await read_json(req)
    change = await run_in_threadpool(
        leads.change_activity_manual, lead_id, payload.get("newActivity"), payload.get("reason")
    )
    return {
        "success": True,
        "message": f'Activity manually changed from "{change.previous_activity}" to "{change.new_activity}"',
        **change.to_dict(),
    }


@app.get("/leads")
async def list_leads(search: str = "", page: int = 1, per_page: int = 100):
    """List leads newest first, or search by email, phone or name."""
    if search.strip():
        result = await run_in_threadpool(crm.search_leads, search, page, per_page)
    else:
        result = await run_in_threadpool(crm.list_leads, page, per_page)

    for lead in result["items"]:
        lead["column"] = board_column(lead.get("activity"))
    return {"success": True, "leads": result["items"], "page": page, "hasMore": result["has_more"]}


@app.get("/leads/{lead_id}")
async def get_lead(lead_id: str):
    lead = await run_in_threadpool(crm.get_lead, lead_id)
    return {"success": True, "lead": lead}


@app.post("/emails/search")
async def search_emails(req: Request):
    """
    Search the connected inbox for messages from a lead.

    Mailbox authentication problems come back as ``success: false`` with a
    fallback message rather than an HTTP error.
    """
    payload = await read_json(req)
    return await run_in_threadpool(dispatcher.search_emails, payload, None)


@app.post("/email/send")
async def send_email(req: Request):
    """
    Send a composed HTML email and stamp the lead's date field.

    Expected payload:
    {
        "to": "jane@acme.co.uk",
        "subject": "Your quote",
        "body": "Hi Jane, ...",
        "emailType": "quotation",
        "leadId": "4876876000000624001"
    }
    """
    payload = await read_json(req)
    return await run_in_threadpool(
        mailer.send_email,
        payload.get("to"),
        payload.get("subject"),
        payload.get("body"),
        payload.get("emailType") or "general",
        payload.get("leadId"),
        payload.get("companyName"),
    )


@app.post("/companies/officers")
async def find_company_officers(req: Request):
    """Look up a company's officers by name or company number."""
    payload = await read_json(req)
    return await run_in_threadpool(companies.find_officers, payload.get("queryInput"))


# Error handlers
@app.exception_handler(CRMAssistantError)
async def service_exception_handler(request: Request, exc: CRMAssistantError):
    if isinstance(exc, NotFoundError):
        error = "Not found"
    elif isinstance(exc, ValidationError):
        error = "Invalid request"
    else:
        error = "Request failed"
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": error, "message": exc.message}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "message": str(exc)}
    )


if __name__ == "__main__":
    import uvicorn

    # Create logs directory if it doesn't exist
    os.makedirs("logs", exist_ok=True)

    logger.info("Starting Lead Workflow Assistant")

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
