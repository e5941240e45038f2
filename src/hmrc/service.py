"""
HMRC MTD API service.

The single entry point route handlers use. Every operation follows the same
sequence: get a fresh access token, build fraud prevention headers, issue
the HTTP call, log it once it settles, and translate failures into the
HmrcApiError taxonomy. Rate limiting and upstream unavailability are retried
with exponential backoff; a 401 triggers exactly one forced token refresh.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

import httpx

from src.oauth.coordinator import TokenRefreshCoordinator

from . import endpoints
from .api_logger import ApiLogEntry, ApiLogger
from .errors import get_error_message, translate_response, translate_transport_error
from .exceptions import HmrcApiError, IncompleteFraudHeadersError, ResourceNotFoundError, ValidationError
from .fraud_headers import FraudHeaderBuilder
from .models import (
    Business,
    BusinessListResponse,
    Calculation,
    CalculationTrigger,
    Obligation,
    ObligationsResponse,
    PeriodSubmission,
    PeriodSummary,
    SubmissionResult,
)
from .tax_years import is_valid_tax_year, tax_year_dates, uses_cumulative_summaries

logger = logging.getLogger(__name__)

NINO_PATTERN = re.compile(r"^[A-CEGHJ-PR-TW-Z]{2}\d{6}[A-D]$")

# Obligation codes that mean "nothing due" rather than a failure
EMPTY_OBLIGATION_CODES = {"MATCHING_RESOURCE_NOT_FOUND", "NO_OBLIGATIONS_FOUND"}
OBLIGATION_STATUSES = ("open", "fulfilled")

MAX_RETRY_DELAY = 30.0


@dataclass
class CallContext:
    """
    Who is calling and from where.

    Attributes:
        user_id: Application user whose HMRC tokens are used
        headers: Inbound request headers (fraud prevention evidence)
        remote_addr: Peer address of the inbound connection
    """

    user_id: str
    headers: Optional[Mapping[str, str]] = None
    remote_addr: Optional[str] = None


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class MtdApiService:
    """
    Client for the HMRC Making Tax Digital Income Tax APIs.

    Example:
        service = MtdApiService(base_url, http_client, coordinator, builder, api_logger)
        businesses = await service.list_businesses(CallContext(user_id), nino)
    """

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient,
        coordinator: TokenRefreshCoordinator,
        fraud_builder: FraudHeaderBuilder,
        api_logger: ApiLogger,
        sandbox: bool = True,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the API service.

        Args:
            base_url: HMRC API base URL (sandbox or production)
            http_client: Shared async HTTP client
            coordinator: Supplies fresh access tokens
            fraud_builder: Builds fraud prevention headers per call
            api_logger: Audit log for every attempt
            sandbox: Attach Gov-Test-Scenario headers
            max_retries: Retries after the first attempt for retryable errors
            retry_delay: Base delay in seconds for exponential backoff
            timeout: Per-attempt HTTP timeout in seconds
            sleep: Awaitable sleep (overridable in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client
        self.coordinator = coordinator
        self.fraud_builder = fraud_builder
        self.api_logger = api_logger
        self.sandbox = sandbox
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Business details
    # ------------------------------------------------------------------

    async def list_businesses(self, ctx: CallContext, nino: str) -> List[Business]:
        """
        List the user's MTD businesses.

        Many users have no registered business yet, so "not found" is an
        empty list. Every other failure propagates.
        """
        nino = self._check_nino(nino)
        try:
            data, _ = await self._request(
                ctx,
                "GET",
                endpoints.BUSINESS_LIST.format(nino=nino),
                endpoints.BUSINESS_DETAILS_API_VERSION,
                scenario=endpoints.SCENARIO_STATEFUL,
            )
        except ResourceNotFoundError as e:
            logger.info(f"No businesses found for user {ctx.user_id} ({e.code})")
            return []

        return BusinessListResponse.model_validate(data or {}).list_of_businesses

    async def get_business_details(self, ctx: CallContext, nino: str, business_id: str) -> Business:
        nino = self._check_nino(nino)
        data, _ = await self._request(
            ctx,
            "GET",
            endpoints.BUSINESS_DETAILS.format(nino=nino, business_id=business_id),
            endpoints.BUSINESS_DETAILS_API_VERSION,
            scenario=endpoints.SCENARIO_STATEFUL,
        )
        return Business.model_validate(data or {})

    # ------------------------------------------------------------------
    # Obligations
    # ------------------------------------------------------------------

    async def get_obligations(
        self,
        ctx: CallContext,
        nino: str,
        tax_year: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Obligation]:
        """
        Get income and expenditure obligations, flattened across businesses.

        Args:
            ctx: Caller context
            nino: National Insurance number
            tax_year: Restrict to one tax year (YYYY-YY)
            status: "open" or "fulfilled"

        Returns:
            One Obligation per obligation window, tagged with its business
        """
        nino = self._check_nino(nino)
        params: Dict[str, str] = {}
        if tax_year:
            self._check_tax_year(tax_year)
            start, end = tax_year_dates(tax_year)
            params["fromDate"] = start.isoformat()
            params["toDate"] = end.isoformat()
        if status:
            if status.lower() not in OBLIGATION_STATUSES:
                raise ValidationError(get_error_message("FORMAT_STATUS"), code="FORMAT_STATUS")
            params["status"] = status.lower()

        try:
            data, _ = await self._request(
                ctx,
                "GET",
                endpoints.OBLIGATIONS.format(nino=nino),
                endpoints.OBLIGATIONS_API_VERSION,
                params=params or None,
                scenario=endpoints.SCENARIO_OPEN,
            )
        except ResourceNotFoundError as e:
            if e.code in EMPTY_OBLIGATION_CODES:
                return []
            raise

        return Obligation.flatten(ObligationsResponse.model_validate(data or {}))

    # ------------------------------------------------------------------
    # Quarterly updates
    # ------------------------------------------------------------------

    async def submit_period(self, ctx: CallContext, nino: str, submission: PeriodSubmission) -> SubmissionResult:
        """
        Submit a quarterly update, creating or amending by period.

        From 2025-26 the cumulative endpoint is create-or-amend by nature.
        For earlier years the existing period summaries are listed first and
        a summary with the same dates is amended instead of duplicated.

        Returns:
            SubmissionResult carrying HMRC's correlation id

        Raises:
            HmrcApiError: On any terminal upstream failure
        """
        nino = self._check_nino(nino)
        business_type = submission.business_type
        tax_year = submission.tax_year
        version = endpoints.period_api_version(tax_year)
        path_args = {"nino": nino, "business_id": submission.business_id, "tax_year": tax_year}

        if uses_cumulative_summaries(tax_year):
            _, correlation_id = await self._request(
                ctx,
                "PUT",
                endpoints.cumulative_path(business_type).format(**path_args),
                version,
                body=self._cumulative_body(submission),
                scenario=endpoints.SCENARIO_STATEFUL,
            )
            logger.info(f"Cumulative update accepted for user {ctx.user_id} ({correlation_id})")
            return SubmissionResult(correlation_id=correlation_id, cumulative=True)

        existing = await self._find_period(ctx, path_args, submission, version)
        if existing:
            _, correlation_id = await self._request(
                ctx,
                "PUT",
                endpoints.period_path(business_type).format(period_id=existing.period_id, **path_args),
                version,
                body=self._period_body(submission, include_dates=False),
                scenario=endpoints.SCENARIO_STATEFUL,
            )
            logger.info(f"Amended period {existing.period_id} for user {ctx.user_id} ({correlation_id})")
            return SubmissionResult(correlation_id=correlation_id, period_id=existing.period_id, amended=True)

        data, correlation_id = await self._request(
            ctx,
            "POST",
            endpoints.periods_path(business_type).format(**path_args),
            version,
            body=self._period_body(submission, include_dates=True),
            scenario=endpoints.SCENARIO_STATEFUL,
        )
        data = data if isinstance(data, dict) else {}
        period_id = data.get("periodId") or data.get("submissionId")
        logger.info(f"Created period {period_id} for user {ctx.user_id} ({correlation_id})")
        return SubmissionResult(correlation_id=correlation_id, period_id=period_id)

    async def retrieve_cumulative_period(
        self,
        ctx: CallContext,
        nino: str,
        business_id: str,
        tax_year: str,
        business_type: str = endpoints.SELF_EMPLOYMENT,
    ) -> Dict[str, Any]:
        """Read the year-to-date cumulative summary (2025-26 onwards)."""
        nino = self._check_nino(nino)
        self._check_tax_year(tax_year)
        if business_type not in endpoints.BUSINESS_TYPES:
            raise ValidationError(get_error_message("FORMAT_VALUE"), code="FORMAT_VALUE")
        data, _ = await self._request(
            ctx,
            "GET",
            endpoints.cumulative_path(business_type).format(
                nino=nino, business_id=business_id, tax_year=tax_year
            ),
            endpoints.period_api_version(tax_year),
            scenario=endpoints.SCENARIO_STATEFUL,
        )
        return data if isinstance(data, dict) else {}

    # ------------------------------------------------------------------
    # Calculations
    # ------------------------------------------------------------------

    async def trigger_calculation(
        self, ctx: CallContext, nino: str, tax_year: str, final_declaration: bool = False
    ) -> CalculationTrigger:
        nino = self._check_nino(nino)
        self._check_tax_year(tax_year)
        data, correlation_id = await self._request(
            ctx,
            "POST",
            endpoints.CALCULATIONS.format(nino=nino, tax_year=tax_year),
            endpoints.CALCULATIONS_API_VERSION,
            body={"finalDeclaration": final_declaration},
            scenario=endpoints.SCENARIO_STATEFUL,
        )
        data = data if isinstance(data, dict) else {}
        return CalculationTrigger(calculation_id=data.get("calculationId", ""), correlation_id=correlation_id)

    async def get_calculation(self, ctx: CallContext, nino: str, tax_year: str, calculation_id: str) -> Calculation:
        nino = self._check_nino(nino)
        self._check_tax_year(tax_year)
        data, _ = await self._request(
            ctx,
            "GET",
            endpoints.CALCULATION.format(nino=nino, tax_year=tax_year, calculation_id=calculation_id),
            endpoints.CALCULATIONS_API_VERSION,
            scenario=endpoints.SCENARIO_STATEFUL,
        )
        return Calculation.model_validate(data or {})

    # ------------------------------------------------------------------
    # Fraud prevention header validation
    # ------------------------------------------------------------------

    async def validate_fraud_headers(self, ctx: CallContext) -> Dict[str, Any]:
        """
        Check this caller's fraud prevention headers with HMRC's validator.

        Returns:
            The validator feedback (code, message, errors and warnings)
        """
        data, _ = await self._request(
            ctx,
            "GET",
            endpoints.FRAUD_HEADERS_VALIDATE,
            endpoints.FRAUD_HEADERS_VALIDATOR_VERSION,
        )
        return data if isinstance(data, dict) else {}

    # ------------------------------------------------------------------
    # Request pipeline
    # ------------------------------------------------------------------

    async def _request(
        self,
        ctx: CallContext,
        method: str,
        path: str,
        version: str,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        scenario: Optional[str] = None,
    ) -> Tuple[Any, Optional[str]]:
        """
        Issue one logical API call with auth, retries and logging.

        Returns:
            Tuple of (decoded response body, HMRC correlation id)

        Raises:
            HmrcApiError: Terminal failure, or the last error once retries run out
            SessionExpiredError: The user has to reconnect to HMRC
            IncompleteFraudHeadersError: Headers could not be completed
        """
        url = f"{self.base_url}{path}"
        log_endpoint = f"{path}?{urlencode(params)}" if params else path
        test_scenario = scenario if self.sandbox else None

        access_token = await self.coordinator.ensure_fresh_token(ctx.user_id)
        refreshed = False
        attempt = 0

        while True:
            started = time.monotonic()
            try:
                headers = self._build_headers(ctx, access_token, version, test_scenario, body is not None)
            except IncompleteFraudHeadersError as e:
                await self._log_attempt(
                    ctx, method, log_endpoint, body, started, test_scenario,
                    status=0, error_code="INCOMPLETE_FRAUD_HEADERS", error_message=str(e),
                )
                raise
            error: HmrcApiError
            try:
                response = await self.http_client.request(
                    method, url, json=body, params=params, headers=headers, timeout=self.timeout
                )
            except asyncio.CancelledError:
                await self._log_attempt(
                    ctx, method, log_endpoint, body, started, test_scenario,
                    status=0, error_code="CANCELLED", error_message="Request cancelled",
                )
                raise
            except httpx.HTTPError as e:
                error = translate_transport_error(e)
                logger.warning(f"Transport error calling HMRC {method} {path}: {type(e).__name__}")
                await self._log_attempt(
                    ctx, method, log_endpoint, body, started, test_scenario,
                    status=0, error_code=error.code, error_message=error.message,
                )
            else:
                payload = _decode_body(response)
                correlation_id = response.headers.get("X-CorrelationId")

                if response.is_success:
                    await self._log_attempt(
                        ctx, method, log_endpoint, body, started, test_scenario,
                        status=response.status_code, response_body=payload, correlation_id=correlation_id,
                    )
                    return payload, correlation_id

                error = translate_response(response)
                await self._log_attempt(
                    ctx, method, log_endpoint, body, started, test_scenario,
                    status=response.status_code, response_body=payload, correlation_id=correlation_id,
                    error_code=error.code, error_message=error.message,
                )

                if response.status_code == 401 and not refreshed:
                    refreshed = True
                    access_token = await self.coordinator.force_refresh(ctx.user_id, access_token)
                    continue

            if error.retryable and attempt < self.max_retries:
                delay = min(self.retry_delay * 2 ** attempt, MAX_RETRY_DELAY)
                if error.retry_after is not None:
                    delay = max(delay, min(error.retry_after, MAX_RETRY_DELAY))
                attempt += 1
                logger.warning(
                    f"HMRC {method} {path} failed with {error.code}, "
                    f"retry {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                await self.sleep(delay)
                continue

            logger.error(f"HMRC {method} {path} failed: {error.code} (status {error.status_code})")
            raise error

    def _build_headers(
        self,
        ctx: CallContext,
        access_token: str,
        version: str,
        test_scenario: Optional[str],
        has_body: bool,
    ) -> Dict[str, str]:
        headers = self.fraud_builder.build(ctx.headers, ctx.user_id, ctx.remote_addr)
        headers["Authorization"] = f"Bearer {access_token}"
        headers["Accept"] = endpoints.accept_header(version)
        if has_body:
            headers["Content-Type"] = "application/json"
        if test_scenario:
            headers["Gov-Test-Scenario"] = test_scenario
        return headers

    async def _log_attempt(
        self,
        ctx: CallContext,
        method: str,
        endpoint: str,
        request_body: Any,
        started: float,
        test_scenario: Optional[str],
        status: int,
        response_body: Any = None,
        correlation_id: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        entry = ApiLogEntry(
            user_id=ctx.user_id,
            method=method,
            endpoint=endpoint,
            request_body=request_body,
            response_status=status,
            response_body=response_body,
            error_code=error_code,
            error_message=error_message,
            duration_ms=int((time.monotonic() - started) * 1000),
            correlation_id=correlation_id,
            gov_test_scenario=test_scenario,
        )
        # Shielded so a cancelled caller still gets a complete entry written
        await asyncio.shield(self.api_logger.log_api_call(entry))

    async def _find_period(
        self,
        ctx: CallContext,
        path_args: Dict[str, str],
        submission: PeriodSubmission,
        version: str,
    ) -> Optional[PeriodSummary]:
        try:
            data, _ = await self._request(
                ctx,
                "GET",
                endpoints.periods_path(submission.business_type).format(**path_args),
                version,
                scenario=endpoints.SCENARIO_STATEFUL,
            )
        except ResourceNotFoundError:
            return None

        data = data if isinstance(data, dict) else {}
        for item in data.get("periods") or data.get("submissions") or []:
            try:
                summary = PeriodSummary.from_upstream(item)
            except ValueError:
                logger.warning(f"Skipping unreadable period summary: {item!r}")
                continue
            if (summary.period_from, summary.period_to) == (submission.period_from, submission.period_to):
                return summary
        return None

    @staticmethod
    def _cumulative_body(submission: PeriodSubmission) -> Dict[str, Any]:
        if submission.business_type == endpoints.SELF_EMPLOYMENT:
            body: Dict[str, Any] = {
                "periodDates": {
                    "periodStartDate": submission.period_from.isoformat(),
                    "periodEndDate": submission.period_to.isoformat(),
                },
                "periodIncome": submission.incomes,
            }
            if submission.expenses:
                body["periodExpenses"] = submission.expenses
            return body

        property_body: Dict[str, Any] = {"income": submission.incomes}
        if submission.expenses:
            property_body["expenses"] = submission.expenses
        return {
            "fromDate": submission.period_from.isoformat(),
            "toDate": submission.period_to.isoformat(),
            "ukProperty": property_body,
        }

    @staticmethod
    def _period_body(submission: PeriodSubmission, include_dates: bool) -> Dict[str, Any]:
        if submission.business_type == endpoints.SELF_EMPLOYMENT:
            body: Dict[str, Any] = {"periodIncome": submission.incomes}
            if submission.expenses:
                body["periodExpenses"] = submission.expenses
            if include_dates:
                body["periodDates"] = {
                    "periodStartDate": submission.period_from.isoformat(),
                    "periodEndDate": submission.period_to.isoformat(),
                }
            return body

        property_body: Dict[str, Any] = {"income": submission.incomes}
        if submission.expenses:
            property_body["expenses"] = submission.expenses
        body = {"ukProperty": property_body}
        if include_dates:
            body["fromDate"] = submission.period_from.isoformat()
            body["toDate"] = submission.period_to.isoformat()
        return body

    @staticmethod
    def _check_nino(nino: str) -> str:
        normalized = (nino or "").replace(" ", "").upper()
        if not NINO_PATTERN.match(normalized):
            raise ValidationError(get_error_message("FORMAT_NINO"), code="FORMAT_NINO")
        return normalized

    @staticmethod
    def _check_tax_year(tax_year: str) -> None:
        if not is_valid_tax_year(tax_year):
            raise ValidationError(get_error_message("FORMAT_TAX_YEAR"), code="FORMAT_TAX_YEAR")
