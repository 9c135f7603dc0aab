"""
Function catalog and workflow instructions sent with every assistant run.
"""

from typing import Dict, Any, List

from tools.activity import NEXT_STAGE, Stage

EMAIL_TYPE_ENUM = ["questionnaire", "quotation", "follow-up", "general", "template"]


def _function(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


def _email_properties(verb: str) -> Dict[str, Any]:
    return {
        "to": {"type": "string", "description": "Email address of the recipient"},
        "subject": {"type": "string", "description": "Subject line of the email"},
        "body": {"type": "string", "description": "Body content of the email in plain text"},
        "emailType": {
            "type": "string",
            "enum": EMAIL_TYPE_ENUM,
            "description": f"Type of email being {verb}",
        },
    }


FUNCTION_TOOLS: List[Dict[str, Any]] = [
    _function(
        "draft_email",
        "Draft an email for the lead without sending it. Use this to show the user what the email "
        "will look like before sending. NEVER sends the email - only shows a preview.",
        _email_properties("drafted"),
        ["to", "subject", "body", "emailType"],
    ),
    _function(
        "send_email_confirmed",
        "Send an email to the lead. ONLY use this after the user has explicitly confirmed they want "
        "to send the email, e.g. 'yes', 'send it' or 'confirm'.",
        _email_properties("sent"),
        ["to", "subject", "body", "emailType"],
    ),
    _function(
        "scrape_company_officers",
        "Look up company officer information from Companies House. Use this when the user asks for "
        "company officers or company research. Ask for the company name or number if not provided.",
        {"queryInput": {"type": "string", "description": "Company name or company number to search for"}},
        ["queryInput"],
    ),
    _function(
        "suggest_activity_progression",
        "Suggest progressing a lead's activity to the next stage in the workflow.",
        {
            "leadId": {"type": "string", "description": "The ID of the lead to suggest progression for"},
            "currentActivity": {"type": "string", "description": "The current activity of the lead"},
            "reason": {"type": "string", "description": "Reason for suggesting the progression"},
        },
        ["leadId", "currentActivity", "reason"],
    ),
    _function(
        "update_lead_activity_confirmed",
        "Update a lead's activity to the next stage. Only use after user confirmation.",
        {
            "leadId": {"type": "string", "description": "The ID of the lead to update"},
            "newActivity": {"type": "string", "description": "The new activity to set for the lead"},
            "reason": {"type": "string", "description": "Reason for the activity update"},
        },
        ["leadId", "newActivity", "reason"],
    ),
    _function(
        "change_activity_manual",
        "Manually change a lead's activity to any specified activity. Use when the user requests a "
        "specific activity change. Only use after user confirmation.",
        {
            "leadId": {"type": "string", "description": "The ID of the lead to update"},
            "currentActivity": {"type": "string", "description": "The current activity of the lead"},
            "newActivity": {"type": "string", "description": "The new activity to set for the lead"},
            "reason": {"type": "string", "description": "Reason for the manual activity change"},
        },
        ["leadId", "newActivity"],
    ),
    _function(
        "search_emails",
        "Search for emails from a specific sender or lead email address. Can filter by time period "
        "using natural language like 'last Thursday', 'yesterday' or 'last week'.",
        {
            "senderEmail": {
                "type": "string",
                "description": "Email address to search for (can be the lead's email or any email address)",
            },
            "timeAfter": {
                "type": "string",
                "description": "Time period to search after, e.g. 'last Thursday', 'yesterday', "
                               "'3 days ago', 'last week', or a specific date",
            },
            "leadEmail": {
                "type": "string",
                "description": "Alternative to senderEmail - the lead's email address to search for",
            },
        },
        ["senderEmail"],
    ),
]

TOOLS: List[Dict[str, Any]] = FUNCTION_TOOLS + [{"type": "file_search"}]

FUNCTION_NAMES = [tool["function"]["name"] for tool in FUNCTION_TOOLS]


def _workflow_lines() -> str:
    lines = []
    for index, (current, following) in enumerate(NEXT_STAGE.items(), 1):
        lines.append(f'{index}. **{current.value}** -> next: "{following.value}"')
    return "\n".join(lines)


INSTRUCTIONS = f"""You are a helpful CRM assistant for managing lead records. You have access to the quotation and questionnaire email templates and other uploaded files.

CRITICAL RULE: NEVER SEND EMAILS OR UPDATE ACTIVITIES WITHOUT EXPLICIT USER CONFIRMATION

GUIDED WORKFLOW:
When a lead record is loaded, analyze its current activity and proactively suggest the next logical step.
The pipeline moves one stage at a time:
{_workflow_lines()}
"{Stage.SEE_CASE_NOTES.value}" is the end of the pipeline. Lost, rejected and do-not-contact leads are never progressed.

WORKFLOW RULES:
- NEVER assume responses have been received; ALWAYS ask the user to confirm response status
- NEVER progress an activity without user confirmation
- After a questionnaire is sent, ALWAYS ask about the response before suggesting quotes

MANUAL ACTIVITY CHANGES:
When the user requests an activity change say: "I'll update [Lead Name]'s activity from '[Current]' to '[New]'. Should I proceed?"

EMAIL WORKFLOW:
1. Use file_search to read the appropriate template
2. Personalize the content (replace [Lead Name], [Your Name], [Company Name])
3. Use draft_email with the real content and show the complete draft
4. Ask: "Should I send this email?"
5. Only call send_email_confirmed after explicit confirmation
6. After sending, suggest the activity update

QUOTATION TIERS:
Always ask which tier to prepare: Bronze (£100+VAT), Silver (£200+VAT) or Gold (£300+VAT).

EMAIL SEARCH:
Use search_emails with the lead's email address and a natural time expression when the user asks you to check for a response.
If email search fails, say: "Email search is currently unavailable. Can you tell me if there has been a response from [Lead Name]?" and continue the workflow manually.

DOCUMENTS:
When documents are uploaded, use file_search to summarize their content objectively before suggesting any CRM action, then ask how the user wants to use the information.
"""


def document_focus(file_count: int) -> str:
    """Extra instructions for a turn that carries uploaded files."""
    return (
        f"\n\nIMPORTANT: The user has uploaded {file_count} document(s). FOCUS ON DOCUMENT ANALYSIS FIRST. "
        "Use the file_search tool to analyze the document content objectively and provide a factual summary "
        "of what's written in the document. Do not interpret everything through the CRM workflow unless the "
        "user specifically asks for CRM-related actions. Then ask how the user wants to proceed."
    )


def run_instructions(file_count: int = 0) -> str:
    return INSTRUCTIONS + document_focus(file_count) if file_count else INSTRUCTIONS
