"""FastAPI server for Content Autopilot."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Any, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .auth import TokenData, get_current_user, require_scopes, verify_webhook_secret
from ..automations.engine import AutomationEngine, build_engine
from ..automations.models import (
    AutomationDefinition,
    ImageStyle,
    RunStatus,
    TriggerConfigError,
    WebhookTrigger,
    parse_trigger_config,
)
from ..automations.store import AutomationNotFoundError
from ..core.config import settings

logger = logging.getLogger(__name__)

# Global engine instance
engine: Optional[AutomationEngine] = None

# Rate limiter configuration
limiter = Limiter(key_func=get_remote_address)

# Type aliases for authenticated user dependencies
AuthenticatedUser = Annotated[TokenData, Depends(get_current_user)]
RunnerUser = Annotated[TokenData, Depends(require_scopes("automations:run"))]
WriterUser = Annotated[TokenData, Depends(require_scopes("write"))]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine on startup and release it on shutdown."""
    global engine

    owns_engine = engine is None
    if owns_engine:
        engine = build_engine(settings)
        logger.info(f"Content Autopilot initialized with database {settings.database_path}")

    if engine.scheduler is not None:
        await engine.scheduler.start()

    try:
        yield
    finally:
        if owns_engine:
            await engine.close()
            engine = None
        logger.info("Content Autopilot shutting down")


app = FastAPI(
    title="Content Autopilot API",
    description="Trigger evaluation and content production runs for automations",
    version="1.0.0",
    lifespan=lifespan,
)

# Add rate limiter to app state and exception handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# --- Request/Response Models ---

class AutomationCreate(BaseModel):
    """Request model for creating an automation."""
    name: str = Field(..., min_length=1, max_length=200)
    workspace_id: str = Field(..., min_length=1)
    client_id: Optional[str] = None
    trigger_type: str
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    content_type: str = "social_post"
    platform: Optional[str] = None
    target_column_id: Optional[str] = None
    prompt_template: Optional[str] = Field(None, max_length=10000)
    auto_generate_content: bool = False
    auto_generate_image: bool = False
    auto_publish: bool = False
    image_style: ImageStyle = ImageStyle.PHOTOGRAPHIC
    image_prompt_template: Optional[str] = Field(None, max_length=4000)
    is_active: bool = True


class AutomationResponse(BaseModel):
    """Response model for an automation."""
    id: str
    workspace_id: str
    client_id: Optional[str]
    name: str
    is_active: bool
    trigger_type: str
    trigger_config: dict[str, Any]
    content_type: str
    platform: Optional[str]
    target_column_id: Optional[str]
    auto_generate_content: bool
    auto_generate_image: bool
    auto_publish: bool
    image_style: str
    last_triggered_at: Optional[datetime]
    items_created: int
    created_by: Optional[str]


class ProcessRequest(BaseModel):
    """Request model for a processing invocation."""
    automation_id: Optional[str] = None


class RunResponse(BaseModel):
    """Response model for a run."""
    id: str
    automation_id: str
    workspace_id: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime]
    duration_ms: Optional[int]
    result: Optional[str]
    error: Optional[str]
    items_created: int
    trigger_data: dict[str, Any]
    transitions: Optional[list[dict[str, Any]]] = None


def _require_engine() -> AutomationEngine:
    if engine is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return engine


def _automation_to_response(automation: AutomationDefinition) -> AutomationResponse:
    data = automation.to_dict()
    if data["trigger_config"].get("secret"):
        data["trigger_config"]["secret"] = "********"
    return AutomationResponse(**data)


def _load_automation(service: AutomationEngine, automation_id: str) -> AutomationDefinition:
    try:
        return service.store.get_automation(automation_id)
    except AutomationNotFoundError:
        raise HTTPException(status_code=404, detail=f"Automation {automation_id} not found")
    except TriggerConfigError as e:
        raise HTTPException(status_code=422, detail=f"Invalid trigger configuration: {e}")


# --- Endpoints ---

@app.get("/")
@app.get("/health")
@limiter.limit("300/minute")
async def health_check(request: Request):
    """Health check endpoint - no authentication required."""
    return {
        "status": "healthy",
        "service": "content-autopilot",
        "version": "1.0.0",
    }


@app.post("/automations/process")
@limiter.limit("30/minute")
async def process_automations(
    request: Request,
    current_user: RunnerUser,
    body: Optional[ProcessRequest] = None,
):
    """
    Process automations.

    Without an automation id every active automation is evaluated. With an
    id, that automation runs immediately, bypassing its trigger guards.
    Requires the ``automations:run`` scope.
    """
    service = _require_engine()
    automation_id = body.automation_id if body else None

    try:
        summary = await service.processor.process(automation_id=automation_id)
    except AutomationNotFoundError:
        raise HTTPException(status_code=404, detail=f"Automation {automation_id} not found")
    except TriggerConfigError as e:
        raise HTTPException(status_code=422, detail=f"Invalid trigger configuration: {e}")

    logger.info(f"Processing requested by {current_user.sub}: {summary.processed} automations")
    return summary.to_dict()


@app.post("/automations", response_model=AutomationResponse, status_code=201)
@limiter.limit("30/minute")
async def create_automation(
    request: Request,
    automation_data: AutomationCreate,
    current_user: WriterUser,
):
    """Create an automation. Requires the ``write`` scope."""
    service = _require_engine()

    try:
        trigger = parse_trigger_config(automation_data.trigger_type, automation_data.trigger_config)
    except TriggerConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    automation = AutomationDefinition(
        workspace_id=automation_data.workspace_id,
        client_id=automation_data.client_id,
        name=automation_data.name,
        trigger=trigger,
        is_active=automation_data.is_active,
        content_type=automation_data.content_type,
        platform=automation_data.platform,
        target_column_id=automation_data.target_column_id,
        prompt_template=automation_data.prompt_template,
        auto_generate_content=automation_data.auto_generate_content,
        auto_generate_image=automation_data.auto_generate_image,
        auto_publish=automation_data.auto_publish,
        image_style=automation_data.image_style,
        image_prompt_template=automation_data.image_prompt_template,
        created_by=current_user.sub,
    )
    service.store.save_automation(automation)
    return _automation_to_response(automation)


@app.get("/automations", response_model=list[AutomationResponse])
@limiter.limit("100/minute")
async def list_automations(
    request: Request,
    current_user: AuthenticatedUser,
    workspace_id: Optional[str] = Query(None, description="Filter by workspace"),
):
    """List automations. Requires authentication."""
    service = _require_engine()
    return [_automation_to_response(a) for a in service.store.list_automations(workspace_id)]


@app.get("/automations/{automation_id}", response_model=AutomationResponse)
@limiter.limit("100/minute")
async def get_automation(
    request: Request,
    automation_id: str,
    current_user: AuthenticatedUser,
):
    """Get a single automation. Requires authentication."""
    service = _require_engine()
    return _automation_to_response(_load_automation(service, automation_id))


@app.post("/automations/{automation_id}/webhook")
@limiter.limit("60/minute")
async def receive_webhook(
    request: Request,
    automation_id: str,
    payload: Annotated[dict[str, Any], Body()] = None,
    x_webhook_secret: Annotated[Optional[str], Header()] = None,
    x_delivery_id: Annotated[Optional[str], Header()] = None,
):
    """
    Inbound webhook delivery.

    Authenticated by the ``X-Webhook-Secret`` header against the
    automation's configured secret. ``X-Delivery-Id`` makes redeliveries
    idempotent.
    """
    service = _require_engine()
    automation = _load_automation(service, automation_id)

    if not isinstance(automation.trigger, WebhookTrigger):
        raise HTTPException(status_code=409, detail="Automation is not triggered by webhooks")
    if not verify_webhook_secret(x_webhook_secret, automation.trigger.secret):
        raise HTTPException(status_code=403, detail="Invalid webhook secret")
    if not automation.is_active:
        raise HTTPException(status_code=409, detail="Automation is inactive")

    outcome = await service.orchestrator.run_webhook(
        automation, payload or {}, delivery_id=x_delivery_id
    )
    return outcome.to_dict()


@app.get("/runs", response_model=list[RunResponse])
@limiter.limit("100/minute")
async def list_runs(
    request: Request,
    current_user: AuthenticatedUser,
    automation_id: Optional[str] = Query(None, description="Filter by automation"),
    status: Optional[str] = Query(None, description="Filter by status"),
    since: Optional[datetime] = Query(None, description="Runs started at or after"),
    until: Optional[datetime] = Query(None, description="Runs started before"),
    limit: int = Query(100, ge=1, le=500),
):
    """Query run history. Requires authentication."""
    service = _require_engine()

    status_enum = None
    if status:
        try:
            status_enum = RunStatus(status)
        except ValueError:
            raise HTTPException(400, f"Invalid status: {status}")

    runs = service.recorder.query(
        automation_id=automation_id,
        status=status_enum,
        since=since,
        until=until,
        limit=limit,
    )
    return [RunResponse(**run.to_dict()) for run in runs]


@app.get("/runs/{run_id}", response_model=RunResponse)
@limiter.limit("100/minute")
async def get_run(
    request: Request,
    run_id: str,
    current_user: AuthenticatedUser,
):
    """Get a run with its transition history. Requires authentication."""
    service = _require_engine()
    run = service.recorder.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return RunResponse(**run.to_dict(), transitions=service.recorder.transitions(run_id))


@app.get("/notifications")
@limiter.limit("100/minute")
async def list_notifications(
    request: Request,
    current_user: AuthenticatedUser,
    unread_only: bool = Query(False),
):
    """Notifications of the calling user."""
    service = _require_engine()
    return [n.to_dict() for n in service.inbox.list_for_user(current_user.sub, unread_only)]


# Run with: uvicorn autopilot.api.server:app
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "autopilot.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
    )
