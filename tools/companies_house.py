import os
import re
from typing import Dict, Any, Optional
import httpx
from loguru import logger

from tools.errors import AuthRequiredError, UpstreamError, ValidationError

API_BASE_URL = "https://api.company-information.service.gov.uk"
SEARCH_PAGE_SIZE = 20
OFFICERS_PAGE_SIZE = 100

_COMPANY_NUMBER = re.compile(r"^(?:[0-9]{6,8}|[A-Za-z]{2}[0-9]{6})$")
_SUFFIXES = (
    re.compile(r"\s*ltd\.?$"),
    re.compile(r"\s*limited\.?$"),
    re.compile(r"\s*plc\.?$"),
    re.compile(r"\s*llp\.?$"),
)

MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def normalize_company_name(name: str) -> str:
    """Lower-case a company name and strip legal suffixes and punctuation."""
    if not name:
        return ""
    text = name.lower().strip()
    for suffix in _SUFFIXES:
        text = suffix.sub("", text)
    text = re.sub(r"[^\w\s]", "", text)
    return re.sub(r"\s+", " ", text).strip()


def is_company_number(query: str) -> bool:
    return bool(_COMPANY_NUMBER.match(query.strip()))


class CompaniesHouseClient:
    """Looks up company officers in the Companies House register."""

    def __init__(self, api_key: Optional[str] = None, http: Optional[httpx.Client] = None):
        self.api_key = api_key if api_key is not None else os.getenv("COMPANIES_HOUSE_API_KEY")
        self.http = http or httpx.Client(base_url=API_BASE_URL, timeout=30)

        if not self.api_key:
            logger.warning("No Companies House API key provided, officer lookups are disabled")

    def find_officers(self, query: str) -> Dict[str, Any]:
        """
        Find the officers of a company by name or company number.

        Args:
            query: Company name or number

        Returns:
            {"success": True, "officers": [...], ...} or
            {"success": False, "message": ...} when nothing matched
        """
        if not query or not str(query).strip():
            raise ValidationError("Query input (company number or name) is required.")
        if not self.api_key:
            return {
                "success": False,
                "message": "Company lookup is not configured. Please set a Companies House API key.",
            }

        query = str(query).strip()
        if is_company_number(query):
            logger.info(f"Looking up officers by company number: {query}")
            return self._officers_result(query.upper(), query, f"company number {query}")

        logger.info(f"Looking up officers by company name: {query}")
        company = self._match_company(query)
        if "message" in company:
            return {"success": False, "message": company["message"]}

        label = f'company name "{query}" (matched as "{company["title"]}", number {company["company_number"]})'
        result = self._officers_result(company["company_number"], query, label)
        result.setdefault("companyName", company["title"])
        return result

    def _match_company(self, name: str) -> Dict[str, Any]:
        payload = self._get("/search/companies", {"q": name, "items_per_page": SEARCH_PAGE_SIZE})
        items = (payload or {}).get("items") or []
        if not items:
            logger.warning(f"No search results found for company name {name!r}")
            return {"message": f'No search results found for company name "{name}".'}

        wanted = normalize_company_name(name)
        for item in items:
            if normalize_company_name(item.get("title", "")) == wanted:
                logger.info(f"Exact name match: {item.get('title')}")
                return item
        for item in items:
            if wanted and normalize_company_name(item.get("title", "")).startswith(wanted):
                logger.info(f"Partial match accepted: {item.get('title')}")
                return item

        first = items[0].get("title", "")
        logger.warning(f"Exact name match failed. Input: {name!r}, first result: {first!r}")
        return {"message": f'No exact match found for company name "{name}". First result was "{first}".'}

    def _officers_result(self, company_number: str, query: str, label: str) -> Dict[str, Any]:
        payload = self._get(
            f"/company/{company_number}/officers",
            {"items_per_page": OFFICERS_PAGE_SIZE},
        )
        if payload is None:
            return {
                "success": False,
                "message": f"Company number {company_number} not found or information is not available.",
            }

        officers = [_officer_record(item) for item in payload.get("items") or []]
        if not officers:
            return {"success": False, "message": f"There are no current officers listed for {label}."}

        logger.info(f"Found {len(officers)} officers for {label}")
        return {
            "success": True,
            "officers": officers,
            "companyIdentifier": query,
            "companyNumber": company_number,
        }

    def _get(self, path: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """GET a JSON resource; None when the register answers 404."""
        try:
            response = self.http.get(path, params=params, auth=(self.api_key, ""))
        except httpx.TransportError as e:
            raise UpstreamError(f"Companies House unreachable: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code == 401:
            raise AuthRequiredError("Companies House rejected the API key")
        if not response.is_success:
            raise UpstreamError(
                f"Companies House error: {response.status_code} - {response.text}",
                status=response.status_code,
                body=response.text,
            )
        return response.json()


def _officer_record(item: Dict[str, Any]) -> Dict[str, Any]:
    birth = item.get("date_of_birth") or {}
    born = None
    if birth.get("year"):
        month = birth.get("month")
        born = f"{MONTHS[month - 1]} {birth['year']}" if month else str(birth["year"])

    address = item.get("address") or {}
    address_text = ", ".join(
        str(address[key])
        for key in ("premises", "address_line_1", "address_line_2", "locality", "region", "postal_code", "country")
        if address.get(key)
    )

    return {
        "name": item.get("name"),
        "role": (item.get("officer_role") or "").replace("-", " ").title() or None,
        "status": "Resigned" if item.get("resigned_on") else "Active",
        "appointedOn": item.get("appointed_on"),
        "resignedOn": item.get("resigned_on"),
        "dateOfBirth": born,
        "nationality": item.get("nationality"),
        "countryOfResidence": item.get("country_of_residence"),
        "occupation": item.get("occupation"),
        "correspondenceAddress": address_text or None,
    }
