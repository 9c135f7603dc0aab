import os
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, List, Optional, Callable, NamedTuple, Union
import httpx
from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta, MO, TH
from loguru import logger

from tools.errors import AuthRequiredError, UpstreamError, ValidationError

INBOX_ENDPOINT = "https://graph.microsoft.com/v1.0/me/mailFolders/inbox/messages"
MESSAGE_FIELDS = "id,subject,sender,receivedDateTime,bodyPreview,hasAttachments"
PAGE_SIZE = 100
PREVIEW_LENGTH = 150
DEFAULT_LOOKBACK_DAYS = 7
NO_RESULTS_TEXT = "No emails found matching your criteria."

_AGO_PATTERNS = (
    (re.compile(r"(\d+)\s+days?\s+ago"), "days"),
    (re.compile(r"(\d+)\s+weeks?\s+ago"), "weeks"),
    (re.compile(r"(\d+)\s+hours?\s+ago"), "hours"),
)
_DATE_PATTERN = re.compile(r"(\d{4}-\d{2}-\d{2})")


class TimeFilter(NamedTuple):
    """Lower bound for a mailbox search resolved from a time expression."""
    after: datetime
    expression: str
    fallback: bool = False


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class OutlookMailSearch:
    """Searches the connected Outlook inbox through Microsoft Graph."""

    def __init__(
        self,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        http: Optional[httpx.Client] = None,
        now: Callable[[], datetime] = _utc_now,
    ):
        self.token_provider = token_provider or (lambda: os.getenv("MS_GRAPH_ACCESS_TOKEN"))
        self.http = http or httpx.Client(timeout=20)
        self.now = now

    def parse_relative_time(self, expression: str) -> TimeFilter:
        """
        Resolve a natural-language time expression to an absolute UTC instant.

        Unrecognized input falls back to seven days ago and is flagged with
        ``fallback=True`` so callers can tell it apart from "7 days ago".
        """
        now = self.now()
        raw = (expression or "").strip()
        text = raw.lower()

        for pattern, unit in _AGO_PATTERNS:
            match = pattern.search(text)
            if match:
                return TimeFilter(now - timedelta(**{unit: int(match.group(1))}), raw)

        if "last thursday" in text:
            # Strictly before today, even when today is a Thursday
            thursday = now - relativedelta(days=1) + relativedelta(weekday=TH(-1))
            return TimeFilter(_midnight(thursday), raw)
        if "yesterday" in text:
            return TimeFilter(now - timedelta(days=1), raw)
        if "last week" in text:
            return TimeFilter(now - timedelta(weeks=1), raw)
        if "today" in text:
            return TimeFilter(_midnight(now), raw)
        if "this week" in text:
            return TimeFilter(_midnight(now + relativedelta(weekday=MO(-1))), raw)
        if "this month" in text:
            return TimeFilter(_midnight(now).replace(day=1), raw)

        parsed = self._parse_iso(raw)
        if parsed is not None:
            return TimeFilter(parsed, raw)

        date_match = _DATE_PATTERN.search(text)
        if date_match:
            parsed = self._parse_iso(date_match.group(1))
            if parsed is not None:
                return TimeFilter(parsed, raw)

        logger.warning(
            f"Could not parse time expression {raw!r}, defaulting to {DEFAULT_LOOKBACK_DAYS} days ago"
        )
        return TimeFilter(now - timedelta(days=DEFAULT_LOOKBACK_DAYS), raw, fallback=True)

    def search(
        self,
        sender_email: str,
        time_after: Union[str, TimeFilter, None] = None,
    ) -> List[Dict[str, Any]]:
        """
        List inbox messages from ``sender_email`` received at or after ``time_after``.

        Args:
            sender_email: Address to match (case-insensitive)
            time_after: Time expression or an already resolved TimeFilter;
                None means no lower bound

        Returns:
            Matching Graph messages, newest first (possibly empty)
        """
        if not sender_email or not sender_email.strip():
            raise ValidationError("Either senderEmail or leadEmail is required")

        window = self.parse_relative_time(time_after) if isinstance(time_after, str) else time_after
        params = {
            "$select": MESSAGE_FIELDS,
            "$top": str(PAGE_SIZE),
            "$orderby": "receivedDateTime desc",
        }
        if window is not None:
            params["$filter"] = f"receivedDateTime ge {window.after.strftime('%Y-%m-%dT%H:%M:%SZ')}"

        logger.info(f"Searching inbox for messages from {sender_email}")
        headers = self._get_headers()
        try:
            response = self.http.get(INBOX_ENDPOINT, headers=headers, params=params)
        except httpx.TransportError as e:
            raise UpstreamError(f"Microsoft Graph unreachable: {e}") from e
        if response.status_code == 401:
            raise AuthRequiredError("Authentication failed. Token may be invalid or expired. Please re-authenticate.")
        if not response.is_success:
            raise UpstreamError(
                f"Graph API error: {response.status_code} - {response.text}",
                status=response.status_code,
                body=response.text,
            )

        messages = response.json().get("value") or []
        target = sender_email.strip().lower()
        matches = [m for m in messages if _sender_address(m).lower() == target]
        if window is not None:
            matches = [m for m in matches if _received_at(m) and _received_at(m) >= window.after]

        logger.info(f"Found {len(matches)} of {len(messages)} inbox messages from {sender_email}")
        return matches

    def format_messages(self, messages: List[Dict[str, Any]]) -> str:
        """Render messages as plain prose for the assistant to read."""
        if not messages:
            return NO_RESULTS_TEXT

        result = f"📧 Found {len(messages)} email(s):\n\n"
        for index, message in enumerate(messages, 1):
            sender = (message.get("sender") or {}).get("emailAddress") or {}
            received = _received_at(message)
            preview = message.get("bodyPreview") or ""
            if len(preview) > PREVIEW_LENGTH:
                preview = preview[:PREVIEW_LENGTH] + "..."

            result += f"**Email {index}:**\n"
            result += f"From: {sender.get('name', '')} <{sender.get('address', '')}>\n"
            result += f"Subject: {message.get('subject') or '(no subject)'}\n"
            result += f"Received: {received.strftime('%b %d, %Y %H:%M') if received else 'unknown'}\n"
            result += f"Preview: {preview}\n"
            if message.get("hasAttachments"):
                result += "📎 Has attachments\n"
            result += "\n---\n\n"
        return result

    def _get_headers(self) -> Dict[str, str]:
        token = self.token_provider()
        if not token:
            raise AuthRequiredError("Microsoft authentication required")
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _parse_iso(value: str) -> Optional[datetime]:
        try:
            parsed = date_parser.isoparse(value)
        except (ValueError, OverflowError):
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)


def _sender_address(message: Dict[str, Any]) -> str:
    return ((message.get("sender") or {}).get("emailAddress") or {}).get("address") or ""


def _received_at(message: Dict[str, Any]) -> Optional[datetime]:
    value = message.get("receivedDateTime")
    if not value:
        return None
    return OutlookMailSearch._parse_iso(value)
