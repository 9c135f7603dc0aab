import httpx
import pytest

from tools.companies_house import CompaniesHouseClient, is_company_number, normalize_company_name
from tools.errors import AuthRequiredError, UpstreamError, ValidationError

OFFICERS = {
    "items": [
        {
            "name": "SMITH, Jane",
            "officer_role": "director",
            "appointed_on": "2019-04-01",
            "date_of_birth": {"month": 3, "year": 1980},
            "nationality": "British",
            "country_of_residence": "England",
            "occupation": "Director",
            "address": {"premises": "1", "address_line_1": "High Street", "locality": "London", "postal_code": "EC1A 1BB"},
        },
        {
            "name": "BROWN, Tom",
            "officer_role": "corporate-secretary",
            "appointed_on": "2015-01-10",
            "resigned_on": "2020-06-30",
        },
    ]
}


class TestCompaniesHouseClient:
    """Officer lookups against a mocked register."""

    def setup_method(self):
        self.requests = []
        self.routes = {}

    def make_client(self, api_key="ch-key"):
        def handler(request):
            self.requests.append(request)
            return self.routes.get(request.url.path, httpx.Response(404))

        http = httpx.Client(base_url="https://ch.test", transport=httpx.MockTransport(handler))
        return CompaniesHouseClient(api_key=api_key, http=http)

    def test_lookup_by_number(self):
        self.routes["/company/01234567/officers"] = httpx.Response(200, json=OFFICERS)
        result = self.make_client().find_officers(" 01234567 ")

        assert result["success"] is True
        assert result["companyNumber"] == "01234567"
        jane, tom = result["officers"]
        assert jane["role"] == "Director"
        assert jane["status"] == "Active"
        assert jane["dateOfBirth"] == "March 1980"
        assert jane["correspondenceAddress"] == "1, High Street, London, EC1A 1BB"
        assert tom["role"] == "Corporate Secretary"
        assert tom["status"] == "Resigned"
        assert self.requests[0].headers["Authorization"].startswith("Basic ")

    def test_lookup_by_name_prefers_exact_match(self):
        self.routes["/search/companies"] = httpx.Response(200, json={"items": [
            {"title": "ACME HOLDINGS LIMITED", "company_number": "11111111"},
            {"title": "ACME LIMITED", "company_number": "22222222"},
        ]})
        self.routes["/company/22222222/officers"] = httpx.Response(200, json=OFFICERS)
        result = self.make_client().find_officers("Acme Ltd")

        assert result["success"] is True
        assert result["companyNumber"] == "22222222"
        assert result["companyName"] == "ACME LIMITED"

    def test_lookup_by_name_accepts_prefix_match(self):
        self.routes["/search/companies"] = httpx.Response(200, json={"items": [
            {"title": "ACME TRADING (UK) LIMITED", "company_number": "33333333"},
        ]})
        self.routes["/company/33333333/officers"] = httpx.Response(200, json=OFFICERS)
        assert self.make_client().find_officers("Acme Trading")["companyNumber"] == "33333333"

    def test_no_match(self):
        self.routes["/search/companies"] = httpx.Response(200, json={"items": [
            {"title": "SOMETHING ELSE LTD", "company_number": "44444444"},
        ]})
        result = self.make_client().find_officers("Acme")

        assert result["success"] is False
        assert 'First result was "SOMETHING ELSE LTD"' in result["message"]

    def test_no_search_results(self):
        self.routes["/search/companies"] = httpx.Response(200, json={"items": []})
        result = self.make_client().find_officers("Nobody Ltd")
        assert result == {"success": False, "message": 'No search results found for company name "Nobody Ltd".'}

    def test_unknown_company_number(self):
        result = self.make_client().find_officers("SC123456")
        assert result["success"] is False
        assert "SC123456 not found" in result["message"]

    def test_no_current_officers(self):
        self.routes["/company/01234567/officers"] = httpx.Response(200, json={"items": []})
        result = self.make_client().find_officers("01234567")
        assert result["success"] is False
        assert "no current officers" in result["message"]

    def test_not_configured(self):
        client = self.make_client(api_key="")
        result = client.find_officers("Acme")

        assert result["success"] is False
        assert self.requests == []

    def test_query_required(self):
        with pytest.raises(ValidationError):
            self.make_client().find_officers("  ")

    def test_upstream_errors(self):
        self.routes["/company/01234567/officers"] = httpx.Response(401)
        with pytest.raises(AuthRequiredError):
            self.make_client().find_officers("01234567")

        self.routes["/company/01234567/officers"] = httpx.Response(503, text="maintenance")
        with pytest.raises(UpstreamError) as exc:
            self.make_client().find_officers("01234567")
        assert exc.value.status == 503


def test_company_name_normalization():
    assert normalize_company_name("Acme Ltd.") == "acme"
    assert normalize_company_name("ACME  (UK) Limited") == "acme uk"
    assert normalize_company_name("") == ""


def test_company_number_detection():
    assert is_company_number("01234567")
    assert is_company_number("sc123456")
    assert not is_company_number("Acme 123")
