import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, Header, HTTPException, status, Query
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.access_policy import property_today
from app.config import settings
from app.conversation import Clock, process_inbound, utc_now
from app.storage import (
    init_db,
    check_db_health,
    get_db,
    get_active_pin,
    get_building_by_id,
    get_conversation_by_id,
    get_conversation_messages,
    get_stats,
    list_conversations,
)
from app.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from app.utils import build_twiml_reply, verify_admin_key, verify_twilio_signature
from app.metrics import record_turn_outcome, get_metrics, get_metrics_content_type
from app.schemas import (
    ActivePinResponse,
    BuildingResponse,
    ConversationDetailResponse,
    ConversationMessageResponse,
    ConversationResponse,
    ConversationsListResponse,
    ErrorResponse,
    HealthResponse,
    InboundSms,
    StatsResponse,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Contractor Access SMS API",
    description="SMS dialogue that hands building access PINs to verified contractors",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


def get_clock() -> Clock:
    """Dependency providing the clock turns are evaluated against."""
    return utc_now


def require_admin_key(
    x_admin_key: Annotated[str | None, Header(alias="X-Admin-Key")] = None,
) -> None:
    if not verify_admin_key(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid admin key"
        )


def _error_response(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body, headers=CORS_HEADERS)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and every
    table is present. Otherwise returns 503 (Service Unavailable).
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# SMS Webhook Routes
# =============================================================================

@app.options("/sms-webhook")
async def sms_webhook_preflight() -> Response:
    """Answer CORS preflight for the carrier's webhook caller."""
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@app.post(
    "/sms-webhook",
    responses={
        200: {"content": {"text/xml": {}}, "description": "TwiML reply"},
        400: {"model": ErrorResponse, "description": "Missing From or Body"},
        401: {"model": ErrorResponse, "description": "Invalid Twilio signature"},
        500: {"model": ErrorResponse, "description": "Internal error"},
    }
)
async def sms_webhook(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> Response:
    """
    Run one turn of the contractor access dialogue for an inbound SMS.

    Body (application/x-www-form-urlencoded), as posted by Twilio:
        - From: sender phone number
        - Body: message text

    Headers:
        - X-Twilio-Signature: checked when TWILIO_AUTH_TOKEN is configured
    """
    form = await request.form()
    params = {key: value for key, value in form.items() if isinstance(value, str)}
    logger.info("SMS webhook request received")

    if settings.TWILIO_AUTH_TOKEN:
        signature = request.headers.get("X-Twilio-Signature", "")
        url = settings.PUBLIC_WEBHOOK_URL or str(request.url)
        if not signature or not verify_twilio_signature(url, params, signature, settings.TWILIO_AUTH_TOKEN):
            logger.error("Invalid Twilio signature")
            record_turn_outcome("invalid_signature")
            log_webhook_data(request, outcome="invalid_signature")
            return _error_response(status.HTTP_401_UNAUTHORIZED, "Invalid signature")

    try:
        inbound = InboundSms.model_validate(params)
    except ValidationError as e:
        logger.error(f"Missing required fields: {e.error_count()} validation errors")
        record_turn_outcome("missing_fields")
        log_webhook_data(request, outcome="missing_fields")
        return _error_response(status.HTTP_400_BAD_REQUEST, "Missing required fields: From and Body")

    try:
        result = await run_in_threadpool(process_inbound, db, inbound.from_number, inbound.body, clock)
    except Exception as e:
        logger.exception("Error processing SMS webhook")
        record_turn_outcome("error")
        log_webhook_data(request, outcome="error")
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", str(e))

    record_turn_outcome(result.outcome.value)
    log_webhook_data(
        request,
        outcome=result.outcome.value,
        conversation_id=result.conversation_id,
        state=result.state,
    )

    return Response(
        content=build_twiml_reply(result.reply),
        status_code=status.HTTP_200_OK,
        headers=CORS_HEADERS,
        media_type="text/xml",
    )


# =============================================================================
# Admin Read Routes
# =============================================================================

@app.get(
    "/conversations",
    response_model=ConversationsListResponse,
    dependencies=[Depends(require_admin_key)],
)
async def get_conversations(
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum number of conversations to return")] = 50,
    offset: Annotated[int, Query(ge=0, description="Number of conversations to skip")] = 0,
    state: Annotated[str | None, Query(description="Filter by conversation state")] = None,
    q: Annotated[str | None, Query(description="Search phone number, company name or unit")] = None,
    db: Session = Depends(get_db)
) -> ConversationsListResponse:
    """
    List contractor conversations, newest first.
    """
    conversations, total = list_conversations(db=db, limit=limit, offset=offset, state=state, q=q)

    return ConversationsListResponse(
        data=[ConversationResponse.model_validate(conv) for conv in conversations],
        total=total,
        limit=limit,
        offset=offset
    )


@app.get(
    "/conversations/{conversation_id}",
    response_model=ConversationDetailResponse,
    responses={404: {"description": "Conversation not found"}},
    dependencies=[Depends(require_admin_key)],
)
async def get_conversation_detail(
    conversation_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> ConversationDetailResponse:
    """
    Conversation with its ordered message log, resolved building and the
    building's currently live PIN.
    """
    conversation = get_conversation_by_id(db, conversation_id)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="conversation not found"
        )

    messages = get_conversation_messages(db, conversation_id)

    building = None
    active_pin = None
    if conversation.building_id:
        building = get_building_by_id(db, conversation.building_id)
        active_pin = get_active_pin(db, conversation.building_id, property_today(clock()))

    return ConversationDetailResponse(
        conversation=ConversationResponse.model_validate(conversation),
        messages=[ConversationMessageResponse.model_validate(msg) for msg in messages],
        building=BuildingResponse.model_validate(building) if building else None,
        active_pin=ActivePinResponse.model_validate(active_pin) if active_pin else None,
    )


@app.get(
    "/stats",
    response_model=StatsResponse,
    dependencies=[Depends(require_admin_key)],
)
async def get_statistics(db: Session = Depends(get_db)) -> StatsResponse:
    """
    Conversation counts per state, total audit rows and PINs delivered.
    """
    stats = get_stats(db)
    logger.info(f"GET /stats: returned stats for {stats['total_conversations']} conversations")
    return StatsResponse(**stats)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
