"""API endpoints for HMRC Making Tax Digital.

Provides the OAuth connect flow, connection status, business and
obligation reads, quarterly updates, tax calculations and the API audit
log. The caller identity comes from the ``X-User-Id`` header set by the
authenticating front end.

HMRC failures are raised as typed exceptions and translated into JSON
responses by the handlers in ``src.server.errors``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional, TypeVar
from urllib.parse import quote

from fastapi import APIRouter, Body, Cookie, Depends, Header, Query, Request, status
from fastapi.responses import RedirectResponse

from src.hmrc.api_logger import ApiLogFilter
from src.hmrc.endpoints import SELF_EMPLOYMENT
from src.hmrc.errors import get_error_message
from src.hmrc.exceptions import UpstreamUnavailableError
from src.oauth.exceptions import AuthExchangeError, AuthorizationError
from src.server.dependencies import (
    MtdContainer,
    get_call_context,
    get_container,
    get_current_user_id,
)
from src.server.models.mtd import (
    ApiLogListResponse,
    ApiLogResponse,
    CalculationTriggerRequest,
    ClearLogsResponse,
    ConnectionStatusResponse,
    ErrorSummaryResponse,
    PeriodSubmissionRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mtd", tags=["mtd"])

STATE_COOKIE = "mtd_oauth_state"

T = TypeVar("T")


async def _with_timeout(container: MtdContainer, operation: Awaitable[T]) -> T:
    """Apply the request-level timeout to one service operation."""
    try:
        return await asyncio.wait_for(operation, timeout=container.settings.request_timeout)
    except asyncio.TimeoutError as e:
        logger.warning("HMRC operation exceeded the request timeout")
        raise UpstreamUnavailableError(
            get_error_message("GATEWAY_TIMEOUT"), code="GATEWAY_TIMEOUT"
        ) from e


def _redirect_to_app(container: MtdContainer, query: str) -> RedirectResponse:
    response = RedirectResponse(
        f"{container.settings.app_url.rstrip('/')}/mtd?{query}",
        status_code=status.HTTP_302_FOUND,
    )
    response.delete_cookie(STATE_COOKIE, path="/")
    return response


# ----------------------------------------------------------------------
# OAuth connect flow
# ----------------------------------------------------------------------


@router.get("/auth/authorize", summary="Start HMRC authorization")
async def authorize(
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> RedirectResponse:
    """Create a CSRF state, set it as a cookie and redirect to HMRC."""
    url, state = await container.auth_flow.begin(user_id)
    response = RedirectResponse(url, status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        STATE_COOKIE,
        state,
        max_age=container.oauth_config.state_ttl_seconds,
        httponly=True,
        secure=not container.is_sandbox,
        samesite="lax",
        path="/",
    )
    return response


@router.get("/auth/callback", summary="HMRC authorization callback")
async def auth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    cookie_state: Optional[str] = Cookie(None, alias=STATE_COOKIE),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    container: MtdContainer = Depends(get_container),
) -> RedirectResponse:
    """Verify the state, exchange the code and store the tokens.

    Always redirects back to the front end with ``connected=true`` or an
    ``error`` message, and always clears the state cookie.
    """
    if error:
        logger.warning(f"HMRC authorization returned error: {error}")
        if state:
            # Burn the state so it cannot be replayed
            await container.state_store.consume(state)
        return _redirect_to_app(container, f"error={quote(error_description or error)}")

    try:
        await container.auth_flow.complete(state, code, cookie_state, user_id=x_user_id or None)
    except AuthorizationError as e:
        return _redirect_to_app(container, f"error={quote(str(e))}")
    except AuthExchangeError as e:
        logger.error(f"Authorization code exchange failed: {e.error_code}")
        return _redirect_to_app(container, f"error={quote('Failed to connect to HMRC')}")

    return _redirect_to_app(container, "connected=true")


@router.get(
    "/status",
    response_model=ConnectionStatusResponse,
    summary="HMRC connection status",
)
async def connection_status(
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> ConnectionStatusResponse:
    result = await container.coordinator.get_connection_status(user_id)
    return ConnectionStatusResponse(
        is_connected=result.is_connected,
        status=result.status,
        connected_at=result.connected_at,
        expires_at=result.expires_at,
        needs_reauth=result.needs_reauth,
    )


@router.post("/disconnect", summary="Disconnect from HMRC")
async def disconnect(
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> Dict[str, bool]:
    await container.coordinator.disconnect(user_id)
    return {"disconnected": True}


# ----------------------------------------------------------------------
# Businesses and obligations
# ----------------------------------------------------------------------


@router.get("/businesses", summary="List MTD businesses")
async def list_businesses(
    request: Request,
    nino: str = Query(..., description="National Insurance number"),
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> Dict[str, Any]:
    """List businesses; an empty list when HMRC has none for this NINO."""
    ctx = get_call_context(request, user_id)
    businesses = await _with_timeout(container, container.service.list_businesses(ctx, nino))
    return {"businesses": [b.model_dump(by_alias=True, mode="json") for b in businesses]}


@router.get("/businesses/{business_id}", summary="Get business details")
async def get_business(
    request: Request,
    business_id: str,
    nino: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> Dict[str, Any]:
    ctx = get_call_context(request, user_id)
    business = await _with_timeout(
        container, container.service.get_business_details(ctx, nino, business_id)
    )
    return business.model_dump(by_alias=True, mode="json")


@router.get("/obligations", summary="List obligations")
async def list_obligations(
    request: Request,
    nino: str = Query(...),
    tax_year: Optional[str] = Query(None, alias="taxYear", description="Tax year, e.g. 2025-26"),
    obligation_status: Optional[str] = Query(None, alias="status", description="open or fulfilled"),
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> Dict[str, Any]:
    """Obligations across all the user's businesses, flattened."""
    ctx = get_call_context(request, user_id)
    obligations = await _with_timeout(
        container, container.service.get_obligations(ctx, nino, tax_year, obligation_status)
    )
    return {"obligations": [o.model_dump(by_alias=True, mode="json") for o in obligations]}


# ----------------------------------------------------------------------
# Quarterly updates
# ----------------------------------------------------------------------


@router.post("/periods", summary="Submit a quarterly update")
async def submit_period(
    request: Request,
    submission: PeriodSubmissionRequest,
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> Dict[str, Any]:
    """Create or amend the quarterly update for one business and period."""
    ctx = get_call_context(request, user_id)
    result = await _with_timeout(
        container, container.service.submit_period(ctx, submission.nino, submission.to_submission())
    )
    return {"success": True, **result.model_dump(by_alias=True, mode="json")}


@router.get("/periods/cumulative", summary="Get the cumulative summary")
async def get_cumulative_period(
    request: Request,
    nino: str = Query(...),
    business_id: str = Query(..., alias="businessId"),
    tax_year: str = Query(..., alias="taxYear"),
    business_type: str = Query(SELF_EMPLOYMENT, alias="businessType"),
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> Dict[str, Any]:
    ctx = get_call_context(request, user_id)
    return await _with_timeout(
        container,
        container.service.retrieve_cumulative_period(ctx, nino, business_id, tax_year, business_type),
    )


# ----------------------------------------------------------------------
# Calculations
# ----------------------------------------------------------------------


@router.post("/calculations/{tax_year}", summary="Trigger a tax calculation")
async def trigger_calculation(
    request: Request,
    tax_year: str,
    nino: str = Query(...),
    body: Optional[CalculationTriggerRequest] = Body(None),
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> Dict[str, Any]:
    ctx = get_call_context(request, user_id)
    final_declaration = body.final_declaration if body else False
    result = await _with_timeout(
        container, container.service.trigger_calculation(ctx, nino, tax_year, final_declaration)
    )
    return result.model_dump(by_alias=True, mode="json")


@router.get("/calculations/{tax_year}/{calculation_id}", summary="Get a tax calculation")
async def get_calculation(
    request: Request,
    tax_year: str,
    calculation_id: str,
    nino: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> Dict[str, Any]:
    ctx = get_call_context(request, user_id)
    calculation = await _with_timeout(
        container, container.service.get_calculation(ctx, nino, tax_year, calculation_id)
    )
    return calculation.model_dump(by_alias=True, mode="json", exclude_none=True)


@router.get("/fraud-headers/validate", summary="Validate fraud prevention headers with HMRC")
async def validate_fraud_headers(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> Dict[str, Any]:
    ctx = get_call_context(request, user_id)
    return await _with_timeout(container, container.service.validate_fraud_headers(ctx))


# ----------------------------------------------------------------------
# API audit log
# ----------------------------------------------------------------------


@router.get("/logs", summary="List API logs or the error summary")
async def list_logs(
    log_status: str = Query("all", alias="status", pattern="^(success|error|all)$"),
    endpoint: Optional[str] = Query(None, description="Endpoint substring"),
    limit: int = Query(100, ge=1, le=1000),
    summary: bool = Query(False, description="Return the error summary instead"),
    days: int = Query(7, ge=1, le=365, description="Error summary window in days"),
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
):
    """The caller's API log, newest first, or an error summary."""
    if summary:
        result = await container.api_logger.get_error_summary(user_id, days=days)
        return ErrorSummaryResponse(
            total_errors=result.total_errors,
            errors_by_code=result.errors_by_code,
            recent_errors=[ApiLogResponse.model_validate(entry) for entry in result.recent_errors],
        ).model_dump(by_alias=True, mode="json")

    entries = await container.api_logger.get_api_logs(
        ApiLogFilter(user_id=user_id, endpoint=endpoint, status=log_status, limit=limit)
    )
    logs = [ApiLogResponse.model_validate(entry) for entry in entries]
    return ApiLogListResponse(logs=logs, count=len(logs)).model_dump(mode="json")


@router.delete("/logs", response_model=ClearLogsResponse, summary="Prune old API logs")
async def clear_logs(
    days_to_keep: Optional[int] = Query(None, alias="daysToKeep", ge=0, le=3650),
    user_id: str = Depends(get_current_user_id),
    container: MtdContainer = Depends(get_container),
) -> ClearLogsResponse:
    """Delete log entries older than ``daysToKeep`` days (default from settings)."""
    days = days_to_keep if days_to_keep is not None else container.settings.log_retention_days
    deleted = await container.api_logger.clear_old_logs(days)
    logger.info(f"User {user_id} pruned {deleted} API log entries")
    return ClearLogsResponse(deleted=deleted, days_to_keep=days)
