from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from loguru import logger

from tools.activity import Stage
from tools.errors import ValidationError
from tools.zoho import ZohoCRMClient

ACTIVITY_FIELD = "Activity"
THREAD_FIELD = "cf_Thread_ID"


@dataclass
class StageChange:
    """Outcome of an activity mutation on a lead."""
    lead_id: str
    lead_name: str
    previous_activity: Optional[str]
    new_activity: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LeadManager:
    """Applies activity and field changes to CRM leads."""

    def __init__(self, crm: ZohoCRMClient):
        self.crm = crm

    def apply_stage_change(self, lead_id: str, new_stage: str, reason: Optional[str] = None) -> StageChange:
        """
        Move a lead onto a recognized pipeline stage.

        The lead is re-read before writing so the reported previous activity
        reflects the CRM at the time of the change.

        Raises:
            ValidationError: if ``new_stage`` is not a pipeline stage
            NotFoundError: if the lead does not exist
            UpstreamError: if the CRM rejects the update
        """
        stage = Stage.parse(new_stage)
        if stage is None:
            raise ValidationError(
                f'"{new_stage}" is not a pipeline stage; use a manual activity change instead'
            )
        return self._set_activity(lead_id, stage.value, reason or "Activity progression")

    def change_activity_manual(self, lead_id: str, new_activity: str, reason: Optional[str] = None) -> StageChange:
        """Set any activity label on a lead, bypassing the progression table."""
        if not new_activity or not new_activity.strip():
            raise ValidationError("Lead ID and new activity are required")
        return self._set_activity(lead_id, new_activity.strip(), reason or "Manual activity change")

    def apply_field_update(self, lead_id: str, field_name: str, field_value: Any) -> Dict[str, Any]:
        """Generic single-field update."""
        if not lead_id or not field_name:
            raise ValidationError("Lead ID and field name are required")
        logger.info(f"Updating lead {lead_id} field {field_name} to {field_value}")
        return self.crm.update_lead(lead_id, {field_name: field_value})

    def bind_thread(self, lead_id: str, thread_id: str) -> None:
        """Persist the conversation thread reference on the lead."""
        self.apply_field_update(lead_id, THREAD_FIELD, thread_id)
        logger.info(f"Updated lead {lead_id} with thread ID {thread_id}")

    def _set_activity(self, lead_id: str, new_activity: str, reason: str) -> StageChange:
        if not lead_id:
            raise ValidationError("Lead ID and new activity are required")

        lead = self.crm.get_lead(lead_id)
        previous = lead.get("activity")

        self.crm.update_lead(lead_id, {ACTIVITY_FIELD: new_activity})
        logger.info(f'Lead {lead_id} activity changed from "{previous}" to "{new_activity}" ({reason})')

        return StageChange(
            lead_id=lead_id,
            lead_name=lead.get("name", "Unknown"),
            previous_activity=previous,
            new_activity=new_activity,
            reason=reason,
        )
