import json
from typing import Dict, Any, List, Optional, Callable
from loguru import logger

from tools.activity import (
    confirmation_question,
    description,
    is_excluded,
    next_stage,
    recommended_action,
)
from tools.catalog import FUNCTION_NAMES
from tools.companies_house import CompaniesHouseClient
from tools.errors import AuthRequiredError, CRMAssistantError, UnknownToolError, ValidationError
from tools.leads import LeadManager
from tools.mailer import EmailSender
from tools.outlook import OutlookMailSearch

# Result text for unexpected failures, by tool
FAILURE_MESSAGES = {
    "draft_email": "Failed to draft email",
    "send_email_confirmed": "Failed to send email",
    "scrape_company_officers": "Failed to look up company information",
    "suggest_activity_progression": "Failed to suggest activity progression",
    "update_lead_activity_confirmed": "Failed to update lead activity",
    "change_activity_manual": "Failed to change activity manually",
    "search_emails": "Email search temporarily unavailable",
}

MAIL_NOT_CONFIGURED = (
    "📧 Email search functionality requires Microsoft authentication setup. For now, I can help you with "
    "other lead management tasks. Would you like me to suggest the next action for this lead instead?"
)
MAIL_UNAVAILABLE = (
    "📧 Email search is currently unavailable. I can help you with other lead management tasks instead. "
    "Would you like me to suggest the next action for this lead?"
)


class ToolDispatcher:
    """Routes assistant function calls to the lead, mail and registry services."""

    def __init__(
        self,
        leads: LeadManager,
        mail: OutlookMailSearch,
        mailer: EmailSender,
        companies: CompaniesHouseClient,
    ):
        self.leads = leads
        self.mail = mail
        self.mailer = mailer
        self.companies = companies
        self.handlers: Dict[str, Callable[[Dict[str, Any], Optional[str]], Dict[str, Any]]] = {
            "draft_email": self.draft_email,
            "send_email_confirmed": self.send_email_confirmed,
            "scrape_company_officers": self.scrape_company_officers,
            "suggest_activity_progression": self.suggest_activity_progression,
            "update_lead_activity_confirmed": self.update_lead_activity_confirmed,
            "change_activity_manual": self.change_activity_manual,
            "search_emails": self.search_emails,
        }

    def dispatch(self, tool_call: Dict[str, Any], lead_id: Optional[str] = None) -> Dict[str, str]:
        """
        Execute one tool call and package its result.

        Never raises: every failure becomes a ``{"success": False, "error": ...}``
        payload so the run can carry on.

        Args:
            tool_call: {"id", "name", "arguments"} with arguments as a JSON string
            lead_id: Lead the conversation is about, used when the call omits leadId

        Returns:
            {"tool_call_id": ..., "output": <JSON string>}
        """
        name = tool_call.get("name")
        logger.info(f"Tool call: {name}")

        try:
            handler = self.handlers.get(name)
            if handler is None:
                raise UnknownToolError(name, FUNCTION_NAMES)
            result = handler(_parse_arguments(tool_call.get("arguments")), lead_id)
        except UnknownToolError as e:
            logger.warning(f"Unknown function call: {name}")
            result = {"success": False, "error": e.message}
        except CRMAssistantError as e:
            logger.error(f"Tool {name} failed: {e}")
            result = {"success": False, "error": e.message}
        except Exception as e:
            logger.error(f"Tool {name} crashed: {e}")
            result = {"success": False, "error": FAILURE_MESSAGES.get(name, "Tool call failed"), "details": str(e)}

        return {"tool_call_id": tool_call.get("id"), "output": json.dumps(result)}

    def dispatch_all(self, tool_calls: List[Dict[str, Any]], lead_id: Optional[str] = None) -> List[Dict[str, str]]:
        """Run every call from one run pause; the results are submitted as one batch."""
        return [self.dispatch(call, lead_id) for call in tool_calls]

    def draft_email(self, args: Dict[str, Any], lead_id: Optional[str]) -> Dict[str, Any]:
        _require(args, "to", "subject", "body")
        email_type = args.get("emailType") or "general"
        logger.info(f"Drafting {email_type} email to {args['to']}")
        return {
            "success": True,
            "message": "Email drafted successfully - showing preview to user",
            "draft": {
                "to": args["to"],
                "subject": args["subject"],
                "body": args["body"],
                "emailType": email_type,
            },
            "requiresConfirmation": True,
        }

    def send_email_confirmed(self, args: Dict[str, Any], lead_id: Optional[str]) -> Dict[str, Any]:
        _require(args, "to", "subject", "body")
        email_type = args.get("emailType") or "general"
        logger.info(f"CONFIRMED: sending {email_type} email to {args['to']}")
        return self.mailer.send_email(
            to=args["to"],
            subject=args["subject"],
            body=args["body"],
            email_type=email_type,
            lead_id=args.get("leadId") or lead_id,
        )

    def scrape_company_officers(self, args: Dict[str, Any], lead_id: Optional[str]) -> Dict[str, Any]:
        _require(args, "queryInput")
        return self.companies.find_officers(args["queryInput"])

    def suggest_activity_progression(self, args: Dict[str, Any], lead_id: Optional[str]) -> Dict[str, Any]:
        _require(args, "currentActivity")
        current = args["currentActivity"]
        target_lead = args.get("leadId") or lead_id
        following = next_stage(current)

        if following is None:
            if is_excluded(current):
                message = f'"{current}" is a closed activity and is never progressed automatically'
            else:
                message = "No next activity available for progression"
            return {"success": False, "message": message, "currentActivity": current, "leadId": target_lead}

        question = f'Would you like me to update this lead\'s activity to "{following.value}"?'
        message = (
            "🔄 ACTIVITY PROGRESSION SUGGESTION:\n\n"
            f'Current Activity: "{current}"\n'
            f'Suggested Next Activity: "{following.value}"\n\n'
            f"Reason: {args.get('reason') or 'Workflow progression'}\n\n"
            f"This means: {description(following)}\n\n"
            f"{question}"
        )
        return {
            "success": True,
            "message": message,
            "nextActivity": following.value,
            "description": description(following),
            "confirmationQuestion": question,
            "currentActivity": current,
            "leadId": target_lead,
        }

    def update_lead_activity_confirmed(self, args: Dict[str, Any], lead_id: Optional[str]) -> Dict[str, Any]:
        _require(args, "newActivity")
        target_lead = _lead_id(args, lead_id)
        change = self.leads.apply_stage_change(target_lead, args["newActivity"], args.get("reason"))

        message = (
            f"✅ Activity updated successfully! {change.lead_name}'s activity changed from "
            f'"{change.previous_activity}" to "{change.new_activity}".'
        )
        question = confirmation_question(change.new_activity)
        if question:
            message += f"\n\n🎯 NEXT ACTION SUGGESTION:\n{question}"

        return {
            "success": True,
            "message": message,
            "leadName": change.lead_name,
            "previousActivity": change.previous_activity,
            "newActivity": change.new_activity,
            "nextAction": recommended_action(change.new_activity),
        }

    def change_activity_manual(self, args: Dict[str, Any], lead_id: Optional[str]) -> Dict[str, Any]:
        _require(args, "newActivity")
        target_lead = _lead_id(args, lead_id)
        change = self.leads.change_activity_manual(target_lead, args["newActivity"], args.get("reason"))
        return {
            "success": True,
            "message": (
                f"✅ Activity manually changed for {change.lead_name} from "
                f'"{change.previous_activity}" to "{change.new_activity}".'
            ),
            "leadName": change.lead_name,
            "previousActivity": change.previous_activity,
            "newActivity": change.new_activity,
        }

    def search_emails(self, args: Dict[str, Any], lead_id: Optional[str]) -> Dict[str, Any]:
        sender = args.get("senderEmail") or args.get("leadEmail")
        if not sender:
            raise ValidationError("Either senderEmail or leadEmail is required")

        expression = args.get("timeAfter")
        window = self.mail.parse_relative_time(expression) if expression else None
        logger.info(f"Searching emails for: {sender}")

        try:
            messages = self.mail.search(sender, window)
        except AuthRequiredError as e:
            logger.warning(f"Email search unavailable, mailbox not authenticated: {e}")
            return {
                "success": False,
                "error": "Email search is not currently configured",
                "message": MAIL_NOT_CONFIGURED,
            }
        except CRMAssistantError as e:
            logger.error(f"Email search failed: {e}")
            return {
                "success": False,
                "error": "Email search temporarily unavailable",
                "message": MAIL_UNAVAILABLE,
            }

        return {
            "success": True,
            "message": self.mail.format_messages(messages),
            "emailCount": len(messages),
            "searchParams": {
                "senderEmail": sender,
                "timeAfter": expression,
                "parsedTimeAfter": window.after.isoformat() if window else None,
                "usedDefaultWindow": window.fallback if window else False,
            },
        }


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid function arguments: {e}") from e
    if not isinstance(parsed, dict):
        raise ValidationError("Function arguments must be a JSON object")
    return parsed


def _require(args: Dict[str, Any], *fields: str) -> None:
    missing = [field for field in fields if not args.get(field)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _lead_id(args: Dict[str, Any], lead_id: Optional[str]) -> str:
    target = args.get("leadId") or lead_id
    if not target:
        raise ValidationError("Lead ID is required")
    return target
