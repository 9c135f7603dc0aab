import os
import re
from typing import Dict, Any, Optional, Callable
import httpx
from loguru import logger

from tools.errors import AuthRequiredError, NotFoundError, RateLimitedError, UpstreamError

LEAD_FIELDS = "id,First_Name,Last_Name,Email,Company,Phone,Lead_Status,Activity,Created_Time,Modified_Time"
MAX_PAGE_SIZE = 200


class ZohoCRMClient:
    """Zoho CRM integration client for lead records."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        http: Optional[httpx.Client] = None,
    ):
        self.base_url = (base_url or os.getenv("ZOHO_API_BASE_URL", "https://www.zohoapis.com/crm/v2")).rstrip("/")
        self.token_provider = token_provider or (lambda: os.getenv("ZOHO_ACCESS_TOKEN"))
        self.http = http or httpx.Client(timeout=20)

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for Zoho API requests."""
        token = self.token_provider()
        if not token:
            raise AuthRequiredError("Zoho CRM access token is not configured")
        return {
            "Authorization": f"Zoho-oauthtoken {token}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self.http.request(method, url, headers=self._get_headers(), **kwargs)
        except httpx.TransportError as e:
            raise UpstreamError(f"Zoho CRM unreachable: {e}") from e

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        body = response.text
        if response.status_code == 401:
            raise AuthRequiredError(f"Zoho CRM rejected the access token while trying to {action}")
        if response.status_code == 429:
            raise RateLimitedError(
                f"Zoho CRM rate limit hit while trying to {action}",
                retry_after=response.headers.get("Retry-After"),
                body=body,
            )
        raise UpstreamError(
            f"Failed to {action}: {response.status_code} - {body}",
            status=response.status_code,
            body=body,
        )

    def get_lead(self, lead_id: str) -> Dict[str, Any]:
        """
        Fetch a single lead.

        Args:
            lead_id: Zoho record id

        Returns:
            Normalized lead dict

        Raises:
            NotFoundError: if the record does not exist
        """
        if not lead_id or not str(lead_id).strip():
            raise NotFoundError("Lead not found")

        clean_id = str(lead_id).strip()
        response = self._request(
            "GET",
            f"{self.base_url}/Leads/{clean_id}",
            params={"fields": f"{LEAD_FIELDS},cf_Thread_ID"},
        )
        if response.status_code in (204, 400, 404):
            raise NotFoundError(f"Lead {clean_id} not found")
        self._raise_for_status(response, f"get lead {clean_id}")

        records = response.json().get("data") or []
        if not records:
            raise NotFoundError(f"Lead {clean_id} not found")
        return normalize_lead(records[0])

    def list_leads(self, page: int = 1, per_page: int = 100) -> Dict[str, Any]:
        """List leads, newest first."""
        logger.info(f"Fetching leads (page {page}, per_page {per_page})")
        response = self._request(
            "GET",
            f"{self.base_url}/Leads",
            params=self._page_params(page, per_page),
        )
        if response.status_code == 204:
            return {"items": [], "has_more": False}
        self._raise_for_status(response, "list leads")
        return self._page_result(response.json())

    def search_leads(self, term: str, page: int = 1, per_page: int = 100) -> Dict[str, Any]:
        """
        Search leads by email, phone or name/company prefix.

        Args:
            term: Free-text search term
            page: 1-based page number
            per_page: Page size (capped at 200)

        Returns:
            {"items": [...], "has_more": bool}
        """
        criteria = build_search_criteria(term)
        logger.info(f"Searching leads with criteria {criteria} (page {page})")

        params = self._page_params(page, per_page)
        params["criteria"] = criteria
        response = self._request(
            "GET",
            f"{self.base_url}/Leads/search",
            params=params,
        )
        # Zoho answers "no matches" with 204 or a 400/404 INVALID_QUERY
        if response.status_code in (204, 400, 404):
            logger.info(f"No search results found for: {term!r}")
            return {"items": [], "has_more": False}
        self._raise_for_status(response, "search leads")

        result = self._page_result(response.json())
        unique = {lead["id"]: lead for lead in result["items"]}
        result["items"] = list(unique.values())
        return result

    def update_lead(self, lead_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Update fields on an existing lead with a single PUT."""
        response = self._request(
            "PUT",
            f"{self.base_url}/Leads/{lead_id}",
            json={"data": [{"id": lead_id, **fields}]},
        )
        self._raise_for_status(response, f"update lead {lead_id}")
        logger.info(f"Updated lead {lead_id} fields {sorted(fields)}")
        return response.json()

    def _page_params(self, page: int, per_page: int) -> Dict[str, str]:
        return {
            "fields": LEAD_FIELDS,
            "page": str(max(1, page)),
            "per_page": str(min(max(1, per_page), MAX_PAGE_SIZE)),
            "sort_order": "desc",
            "sort_by": "Created_Time",
        }

    def _page_result(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "items": [normalize_lead(record) for record in payload.get("data") or []],
            "has_more": (payload.get("info") or {}).get("more_records") is True,
        }


def normalize_lead(record: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a raw Zoho lead record into the shape the rest of the app uses."""
    name = f"{record.get('First_Name') or ''} {record.get('Last_Name') or ''}".strip()
    return {
        "id": record.get("id"),
        "name": name or "Unknown",
        "company": record.get("Company") or "Unknown Company",
        "email": record.get("Email") or "",
        "phone": record.get("Phone"),
        "status": record.get("Lead_Status"),
        "activity": record.get("Activity"),
        "thread_id": record.get("cf_Thread_ID"),
        "created_time": record.get("Created_Time"),
        "modified_time": record.get("Modified_Time"),
    }


def build_search_criteria(term: str) -> str:
    """Build a Zoho search criteria string from a free-text term."""
    term = (term or "").strip()
    if "@" in term:
        return f"(Email:equals:{term})"
    if term and re.fullmatch(r"\d+", re.sub(r"[\s\-+()]", "", term)):
        return f"(Phone:equals:{term})"
    first_word = term.split()[0] if term else ""
    return (
        f"((First_Name:starts_with:{first_word}) or "
        f"(Last_Name:starts_with:{first_word}) or "
        f"(Company:starts_with:{first_word}))"
    )
