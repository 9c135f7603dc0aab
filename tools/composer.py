"""
HTML email composition.

Turns the plain-text body written by the assistant (or a user) into the
branded HTML the outbound transport sends. Pure functions: the same input
always produces byte-identical output.
"""

import html
import os
import re
from typing import Dict, Any, List

COMPANY_NAME = os.getenv("COMPANY_NAME", "Forbes Burton")

EMAIL_TYPES = ("questionnaire", "quotation", "follow-up", "general", "template")

TYPE_COLORS = {
    "questionnaire": "#3B82F6",
    "quotation": "#10B981",
    "follow-up": "#F59E0B",
    "general": "#6B7280",
}

SUBJECT_TEMPLATES = {
    "questionnaire": ("📋 Business Questionnaire - {company}", "Your Business Growth"),
    "quotation": ("💰 Your Business Growth Quote - {company}", "Tailored Solutions"),
    "follow-up": ("🔄 Following Up - {company}", "Your Business Growth Journey"),
    "general": ("📧 Message from " + COMPANY_NAME + " - {company}", "Business Growth Solutions"),
}

_BULLET = re.compile(r"^\s*(?:[-*]|•)\s+(.*)$")
_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_QUOTED = re.compile(r'"([^"<>]+)"')
_EMAIL = re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
_PHONE = re.compile(r"(?<![\w@.])(\+?\(?\d[\d ()\-]{8,}\d)(?![\w@])")
_MIN_PHONE_DIGITS = 10
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")

_SHELL = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Email from {company_name}</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif;
            line-height: 1.6;
            color: #333333;
            max-width: 600px;
            margin: 0 auto;
            padding: 20px;
            background-color: #f8fafc;
        }}
        .email-container {{
            background-color: #ffffff;
            border-radius: 12px;
            box-shadow: 0 4px 6px rgba(0, 0, 0, 0.1);
            overflow: hidden;
        }}
        .email-body {{ padding: 32px; }}
        .email-content {{ font-size: 16px; line-height: 1.7; margin-bottom: 24px; }}
        .email-content p {{ margin-bottom: 16px; }}
        .email-content strong {{ color: {color}; font-weight: 600; }}
        .email-content ul {{ padding-left: 20px; margin-bottom: 16px; }}
        .email-content li {{ margin-bottom: 8px; }}
        .footer {{
            background-color: #f9fafb;
            padding: 20px;
            text-align: center;
            color: #6b7280;
            font-size: 14px;
            border-top: 1px solid #e5e7eb;
        }}
        @media (max-width: 600px) {{
            body {{ padding: 10px; }}
            .email-body {{ padding: 20px; }}
        }}
    </style>
</head>
<body>
    <div class="email-container">
        <div class="email-body">
            <div class="email-content">
                {content}
            </div>
        </div>
        <div class="footer">
            <p style="margin: 0;">This email was sent from {company_name} CRM System</p>
        </div>
    </div>
</body>
</html>"""


def normalize_email_type(email_type: str) -> str:
    """Map any email type onto one with a template; unknown types become general."""
    kind = (email_type or "general").strip().lower()
    return kind if kind in TYPE_COLORS else "general"


def compose_email(email_type: str, data: Dict[str, Any]) -> Dict[str, str]:
    """
    Build the subject and HTML body for an outbound email.

    Args:
        email_type: questionnaire, quotation, follow-up, general or template
        data: must contain ``content`` (plain text); ``company_name`` is the
            recipient's company used in the subject line

    Returns:
        {"subject": ..., "html_body": ...}
    """
    kind = normalize_email_type(email_type)
    template, default_company = SUBJECT_TEMPLATES[kind]
    subject = template.format(company=data.get("company_name") or default_company)

    html_body = _SHELL.format(
        company_name=COMPANY_NAME,
        color=TYPE_COLORS[kind],
        content=format_content(data.get("content") or ""),
    )
    return {"subject": subject, "html_body": html_body}


def format_content(text: str) -> str:
    """Convert plain text into paragraphs and lists."""
    blocks: List[str] = []
    for paragraph in re.split(r"\n\s*\n", text.replace("\r\n", "\n")):
        paragraph = paragraph.strip()
        if not paragraph:
            continue

        lines: List[str] = []
        items: List[str] = []
        for line in paragraph.split("\n"):
            bullet = _BULLET.match(line)
            if bullet:
                if lines:
                    blocks.append(_paragraph(lines))
                    lines = []
                items.append(f"<li>{format_inline(bullet.group(1).strip())}</li>")
            else:
                if items:
                    blocks.append(f"<ul>{''.join(items)}</ul>")
                    items = []
                lines.append(line.strip())
        if lines:
            blocks.append(_paragraph(lines))
        if items:
            blocks.append(f"<ul>{''.join(items)}</ul>")
    return "".join(blocks)


def _paragraph(lines: List[str]) -> str:
    body = format_inline("\n".join(lines))
    return f"<p>{body}</p>"


def format_inline(text: str) -> str:
    """Escape text and apply bold, quote, email and phone markup."""
    text = html.escape(text, quote=False)
    text = _BOLD.sub(r"<strong>\1</strong>", text)
    text = _QUOTED.sub(r'<strong>"\1"</strong>', text)
    text = _EMAIL.sub(r'<a href="mailto:\1" style="color: #3B82F6;">\1</a>', text)
    text = _PHONE.sub(_link_phone, text)
    return text.replace("\n", "<br>")


def _link_phone(match: re.Match) -> str:
    number = match.group(1)
    if sum(ch.isdigit() for ch in number) < _MIN_PHONE_DIGITS or _ISO_DATE.search(number):
        return number
    return f'<a href="tel:{number}" style="color: #3B82F6;">{number}</a>'


def plain_text(body: str) -> str:
    """Strip markup from a body to build the text/plain alternative."""
    text = re.sub(r"<br\s*/?>", "\n", body or "", flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]*>", "", text)
    text = html.unescape(text.replace("&nbsp;", " "))
    text = re.sub(r"\n\s*\n\s*\n", "\n\n", text)
    return text.strip()
