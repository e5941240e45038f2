"""HMRC MTD API endpoint paths and versions."""

from .tax_years import uses_cumulative_summaries

OBLIGATIONS_API_VERSION = "3.0"
BUSINESS_DETAILS_API_VERSION = "2.0"
CALCULATIONS_API_VERSION = "5.0"
CUMULATIVE_API_VERSION = "5.0"
PERIOD_SUMMARY_API_VERSION = "4.0"

SELF_EMPLOYMENT = "self-employment"
UK_PROPERTY = "uk-property"
BUSINESS_TYPES = (SELF_EMPLOYMENT, UK_PROPERTY)

# Gov-Test-Scenario values, sandbox only
SCENARIO_STATEFUL = "STATEFUL"
SCENARIO_OPEN = "OPEN"

# Obligations
OBLIGATIONS = "/obligations/details/{nino}/income-and-expenditure"

# Business details
BUSINESS_LIST = "/individuals/business/details/{nino}/list"
BUSINESS_DETAILS = "/individuals/business/details/{nino}/{business_id}"

# Self-employment
SE_CUMULATIVE = "/individuals/business/self-employment/{nino}/{business_id}/cumulative/{tax_year}"
SE_PERIODS = "/individuals/business/self-employment/{nino}/{business_id}/period/{tax_year}"
SE_PERIOD = "/individuals/business/self-employment/{nino}/{business_id}/period/{tax_year}/{period_id}"

# UK property
PROPERTY_CUMULATIVE = "/individuals/business/property/uk/{nino}/{business_id}/cumulative/{tax_year}"
PROPERTY_PERIODS = "/individuals/business/property/{nino}/{business_id}/period/{tax_year}"
PROPERTY_PERIOD = "/individuals/business/property/uk/{nino}/{business_id}/period/{tax_year}/{period_id}"

# Calculations
CALCULATIONS = "/individuals/calculations/self-assessment/{nino}/{tax_year}"
CALCULATION = "/individuals/calculations/self-assessment/{nino}/{tax_year}/{calculation_id}"


def accept_header(version: str) -> str:
    return f"application/vnd.hmrc.{version}+json"


def period_api_version(tax_year: str) -> str:
    """Self-employment and property API version for a tax year."""
    if uses_cumulative_summaries(tax_year):
        return CUMULATIVE_API_VERSION
    return PERIOD_SUMMARY_API_VERSION


def cumulative_path(business_type: str) -> str:
    return SE_CUMULATIVE if business_type == SELF_EMPLOYMENT else PROPERTY_CUMULATIVE


def periods_path(business_type: str) -> str:
    return SE_PERIODS if business_type == SELF_EMPLOYMENT else PROPERTY_PERIODS


def period_path(business_type: str) -> str:
    return SE_PERIOD if business_type == SELF_EMPLOYMENT else PROPERTY_PERIOD


# Fraud prevention header validator (sandbox test API)
FRAUD_HEADERS_VALIDATE = "/test/fraud-prevention-headers/validate"
FRAUD_HEADERS_VALIDATOR_VERSION = "1.0"
