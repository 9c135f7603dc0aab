"""
Lead activity pipeline.

Every lead sits on exactly one activity label. Labels in ``NEXT_STAGE`` move
forward one step at a time; ``See Case Notes`` is the end of the line, and the
lost/excluded labels are never progressed automatically.
"""

from enum import Enum
from typing import Dict, Optional, Union


class Stage(str, Enum):
    FRESH = "Fresh"
    ATTEMPTING_CONTACT = "Attempting to make contact with lead"
    QUOTATION_EMAIL_SENT = "Quotation Email Sent"
    QUESTIONNAIRE_SENT = "Questionnaire Sent"
    QUESTIONNAIRE_CHASING = "Questionnaire Chasing"
    QUESTIONNAIRE_FINAL_CHASE = "Questionnaire Final Chase"
    QUESTIONNAIRE_RECEIVED = "Questionnaire Received, Awaiting Assessment"
    INFORMAL_QUOTE_GIVEN = "Informal Quote Given, Awaiting Response"
    QUOTE_GIVEN = "Quote Given, Awaiting Response"
    AWAITING_INSTRUCTION = "Awaiting Client Instruction"
    DETAILS_PASSED = "Details Passed To Relevant People For Contact"
    SEE_CASE_NOTES = "See Case Notes"

    @classmethod
    def parse(cls, label: Optional[str]) -> Optional["Stage"]:
        """Return the matching stage, or None for unknown/empty labels."""
        if isinstance(label, cls):
            return label
        if not isinstance(label, str) or not label:
            return None
        try:
            return cls(label.strip())
        except ValueError:
            return None


StageLike = Union[Stage, str, None]

NEXT_STAGE: Dict[Stage, Stage] = {
    Stage.FRESH: Stage.ATTEMPTING_CONTACT,
    # Response checking is skipped for now: contact goes straight to quotation
    Stage.ATTEMPTING_CONTACT: Stage.QUOTATION_EMAIL_SENT,
    Stage.QUOTATION_EMAIL_SENT: Stage.QUESTIONNAIRE_SENT,
    Stage.QUESTIONNAIRE_SENT: Stage.QUESTIONNAIRE_CHASING,
    Stage.QUESTIONNAIRE_CHASING: Stage.QUESTIONNAIRE_FINAL_CHASE,
    Stage.QUESTIONNAIRE_FINAL_CHASE: Stage.QUESTIONNAIRE_RECEIVED,
    Stage.QUESTIONNAIRE_RECEIVED: Stage.INFORMAL_QUOTE_GIVEN,
    Stage.INFORMAL_QUOTE_GIVEN: Stage.QUOTE_GIVEN,
    Stage.QUOTE_GIVEN: Stage.AWAITING_INSTRUCTION,
    Stage.AWAITING_INSTRUCTION: Stage.DETAILS_PASSED,
    Stage.DETAILS_PASSED: Stage.SEE_CASE_NOTES,
}

NEXT_ACTIONS: Dict[Stage, str] = {
    Stage.FRESH: "Send an introductory email to make first contact",
    Stage.ATTEMPTING_CONTACT: "Send a quotation email with questionnaire",
    Stage.QUOTATION_EMAIL_SENT: "Monitor for response and follow up if needed",
    Stage.QUESTIONNAIRE_SENT: "Set reminder to follow up on questionnaire response",
    Stage.QUESTIONNAIRE_CHASING: "Send follow-up email about the questionnaire",
    Stage.QUESTIONNAIRE_FINAL_CHASE: "Make final attempt to get questionnaire response",
    Stage.QUESTIONNAIRE_RECEIVED: "Review and assess the questionnaire responses",
    Stage.INFORMAL_QUOTE_GIVEN: "Monitor for response to the informal quote",
    Stage.QUOTE_GIVEN: "Follow up on the formal quote response",
    Stage.AWAITING_INSTRUCTION: "Wait for client to provide further instructions",
    Stage.DETAILS_PASSED: "Ensure relevant team has contacted the lead",
    Stage.SEE_CASE_NOTES: "Review case notes for current status and next steps",
}

ACTION_QUESTIONS: Dict[Stage, str] = {
    Stage.FRESH: "Should I send an introductory email to this lead?",
    Stage.ATTEMPTING_CONTACT: "Should I send a quotation email with questionnaire to this lead?",
    Stage.QUOTATION_EMAIL_SENT: "Should I monitor for their response to the quotation email?",
    Stage.QUESTIONNAIRE_SENT: "Should I set a reminder to follow up on the questionnaire in a few days?",
    Stage.QUESTIONNAIRE_CHASING: "Should I send a follow-up email to chase the questionnaire response?",
    Stage.QUESTIONNAIRE_FINAL_CHASE: "Should I make a final attempt to get the questionnaire response?",
    Stage.QUESTIONNAIRE_RECEIVED: "Should I review and assess the questionnaire responses now?",
    Stage.INFORMAL_QUOTE_GIVEN: "Should I monitor for their response to the informal quote?",
    Stage.QUOTE_GIVEN: "Should I set up follow-up for the formal quote response?",
    Stage.AWAITING_INSTRUCTION: "Should I wait for the client to provide further instructions?",
    Stage.DETAILS_PASSED: "Should I check if the relevant team has contacted this lead?",
    Stage.SEE_CASE_NOTES: "Should I review the case notes to determine the next steps?",
}

DESCRIPTIONS: Dict[Stage, str] = {
    Stage.FRESH: "New lead that hasn't been contacted yet",
    Stage.ATTEMPTING_CONTACT: "Actively trying to reach the lead",
    Stage.QUOTATION_EMAIL_SENT: "Quotation email with questionnaire has been sent",
    Stage.QUESTIONNAIRE_SENT: "Initial questionnaire has been sent to the lead",
    Stage.QUESTIONNAIRE_CHASING: "Following up on the sent questionnaire",
    Stage.QUESTIONNAIRE_FINAL_CHASE: "Final attempt to get questionnaire response",
    Stage.QUESTIONNAIRE_RECEIVED: "Questionnaire received, being reviewed",
    Stage.INFORMAL_QUOTE_GIVEN: "Initial quote provided, waiting for response",
    Stage.QUOTE_GIVEN: "Formal quote provided, waiting for response",
    Stage.AWAITING_INSTRUCTION: "Waiting for client to provide further instructions",
    Stage.DETAILS_PASSED: "Lead details forwarded to appropriate team",
    Stage.SEE_CASE_NOTES: "Refer to case notes for current status",
}

# Labels that live outside the pipeline and must never be auto-progressed
EXCLUDED_ACTIVITIES = frozenset({
    "Lost Lead",
    "Lost Potential",
    "Lost Client",
    "DO NOT CONTACT",
    "REJECTED",
})

BOARD_COLUMNS: Dict[str, tuple] = {
    "leads": (Stage.FRESH.value, Stage.ATTEMPTING_CONTACT.value),
    "questionnaire": (
        Stage.QUESTIONNAIRE_SENT.value,
        Stage.QUESTIONNAIRE_CHASING.value,
        Stage.QUESTIONNAIRE_FINAL_CHASE.value,
        Stage.QUESTIONNAIRE_RECEIVED.value,
    ),
    "quotation": (
        Stage.QUOTATION_EMAIL_SENT.value,
        Stage.INFORMAL_QUOTE_GIVEN.value,
        Stage.QUOTE_GIVEN.value,
        Stage.AWAITING_INSTRUCTION.value,
        "MVL Quote Sent",
    ),
    "details-passed": (Stage.DETAILS_PASSED.value, Stage.SEE_CASE_NOTES.value),
    "lost-cases": tuple(sorted(EXCLUDED_ACTIVITIES)),
    "others": ("Inactive/Slow Engage", "Future Lead", "Telesales", "Zoho Campaigns"),
}


def next_stage(current: StageLike) -> Optional[Stage]:
    """Get the stage that follows ``current``, or None if it has no successor."""
    stage = Stage.parse(current)
    if stage is None:
        return None
    return NEXT_STAGE.get(stage)


def is_progressable(current: StageLike) -> bool:
    """True iff ``current`` is a key in the progression table."""
    return Stage.parse(current) in NEXT_STAGE


def recommended_action(stage: StageLike) -> Optional[str]:
    parsed = Stage.parse(stage)
    return NEXT_ACTIONS.get(parsed) if parsed else None


def confirmation_question(stage: StageLike) -> Optional[str]:
    parsed = Stage.parse(stage)
    return ACTION_QUESTIONS.get(parsed) if parsed else None


def description(stage: StageLike) -> str:
    """Human-readable meaning of a stage, falling back to the raw label."""
    parsed = Stage.parse(stage)
    if parsed is not None:
        return DESCRIPTIONS[parsed]
    return stage.value if isinstance(stage, Enum) else str(stage or "")


def is_excluded(activity: Optional[str]) -> bool:
    return isinstance(activity, str) and activity.strip() in EXCLUDED_ACTIVITIES


def board_column(activity: Optional[str]) -> str:
    """
    Dashboard column for an activity label.

    Leads without an activity are treated as fresh; unrecognized labels land
    in ``others``.
    """
    if not activity:
        return "leads"
    if not isinstance(activity, str):
        return "others"
    label = activity.strip()
    for column, labels in BOARD_COLUMNS.items():
        if label in labels:
            return column
    return "others"
