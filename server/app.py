"""
FastAPI application for the bill tracker.

Every surface (admin/staff, vendor, security) uses the same endpoints; the
acting user is taken from the X-User-Role, X-User-Name and X-Vendor-Id
headers, authentication being delegated to the hosting provider.

Endpoints:
- GET  /health                      - Health check
- GET  /records                     - Visible billing records with progress
- POST /records                     - Create a billing record (admin/staff)
- GET  /records/{id}                - Single record with progress
- POST /records/{id}/status         - Advance the invoice status
- PUT  /records/{id}/payment-status - Set the payment status (admin/staff)
- GET  /notifications               - Notifications, optionally since a time
- POST /notifications/{id}/read     - Mark a notification read
- GET  /stats                       - Budget statistics
- GET  /settings/budget             - Budget settings
- PUT  /settings/budget             - Update budget settings (admin)
- GET  /vendors, POST /vendors, DELETE /vendors/{id}
- GET  /capex, POST /capex
- POST /api/notify                  - Relay an event to feed subscribers
- POST /api/send-email              - Mock email relay (logged only)
- WS   /ws                          - Notification stream
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from database.connectivity import build_stores
from server.config import Settings, get_settings
from state_machine.bill_status import TransitionError, progress_percent, progress_steps, stage_index
from state_machine.models import (
    Actor,
    AppNotification,
    BillingRecord,
    CapexEntry,
    GstType,
    InvoiceStatus,
    PaymentStatus,
    Role,
    Vendor,
)
from tracker.app_state import DashboardStore, InFlightRegistry
from tracker.base import (
    BillingStore,
    ConflictError,
    DuplicateSubmissionError,
    PermissionDeniedError,
    PersistenceError,
    RecordNotFoundError,
    TrackerError,
)
from tracker.feed import NotificationFeed, make_event
from tracker.stats import BudgetSettings, DashboardStats, capex_budget_warning
from tracker.status_tracker import BillStatusTracker, can_view

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ============================================================================
# Request / Response Models
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    store: str
    records_count: int
    subscribers: int
    notification_poll_interval: float


class ProgressStep(BaseModel):
    id: str
    label: str
    completed: bool
    current: bool
    next: bool


class RecordResponse(BillingRecord):
    """Billing record with its derived progress."""

    stage_index: int
    progress_percent: float
    progress: list[ProgressStep]


class AdvanceRequest(BaseModel):
    """Request to advance an invoice status."""

    status: InvoiceStatus
    remark: Optional[str] = None


class AdvanceResponse(BaseModel):
    record: RecordResponse
    previous_status: Optional[str]
    notification: Optional[AppNotification]


class PaymentStatusRequest(BaseModel):
    payment_status: PaymentStatus


class CreateRecordRequest(BaseModel):
    """Request to create a billing record."""

    vendor_id: Optional[str] = None
    manual_vendor_name: Optional[str] = None
    invoice_number: Optional[str] = None
    service_type: str
    bill_date: date
    service_start_date: Optional[date] = None
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    gst_rate: Optional[Decimal] = None
    cgst_rate: Optional[Decimal] = None
    sgst_rate: Optional[Decimal] = None
    gst_amount: Optional[Decimal] = None
    gst_type: Optional[GstType] = None
    total_amount: Decimal = Field(default=Decimal("0"), ge=0)
    bill_url: Optional[str] = None
    po_url: Optional[str] = None
    remarks: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING


class CreateRecordResponse(BaseModel):
    record: RecordResponse
    warning: Optional[str] = None


class CreateVendorRequest(BaseModel):
    name: str = Field(..., min_length=1)
    service_type: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class CreateCapexRequest(BaseModel):
    vendor_id: Optional[str] = None
    department_id: Optional[str] = None
    category: str = ""
    description: str = ""
    amount: Decimal = Field(..., ge=0)
    entry_date: date
    invoice_url: Optional[str] = None
    remarks: Optional[str] = None


class CreateCapexResponse(BaseModel):
    entry: CapexEntry
    warning: Optional[str] = None


class NotifyRequest(BaseModel):
    """Event relayed to every feed subscriber."""

    type: str = "notification"
    message: str
    data: Optional[Any] = None


class EmailRequest(BaseModel):
    to: str
    subject: str
    body: str = ""


# ============================================================================
# Application State
# ============================================================================


class AppState:
    """Application state container."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[BillingStore] = None,
        fallback_store: Optional[BillingStore] = None,
    ):
        self.settings = settings

        if store is None:
            store, fallback_store = build_stores(
                settings.database_url,
                offline_mode=settings.offline_mode,
                local_store_path=settings.local_store_path or None,
            )
        self.store = store
        self.fallback_store = fallback_store

        self.feed = NotificationFeed()
        self.tracker = BillStatusTracker(
            store=store,
            fallback_store=fallback_store,
            strict_transitions=settings.strict_transitions,
            optimistic_concurrency=settings.optimistic_concurrency,
            enforce_role_permissions=settings.enforce_role_permissions,
            feed=self.feed,
        )

        # Shared by every request so a record has at most one update in flight
        self.in_flight = InFlightRegistry()

    def dashboard_for(self, actor: Actor) -> DashboardStore:
        """Build a request-scoped dashboard sharing the in-flight registry."""
        return DashboardStore(self.tracker, actor, in_flight=self.in_flight)


# Global state (will be initialized on startup)
app_state: Optional[AppState] = None


def get_state() -> AppState:
    if not app_state:
        raise HTTPException(status_code=503, detail="Service not ready")
    return app_state


def get_actor(
    x_user_role: str = Header(default="staff"),
    x_user_name: Optional[str] = Header(default=None),
    x_vendor_id: Optional[str] = Header(default=None),
) -> Actor:
    """Build the acting user from request headers."""
    try:
        role = Role(x_user_role.strip().lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role: {x_user_role}")
    return Actor(role=role, display_name=x_user_name, vendor_id=x_vendor_id)


def _require_admin_or_staff(actor: Actor) -> None:
    if not actor.is_admin_or_staff:
        raise HTTPException(status_code=403, detail="Admin or staff only")


# ============================================================================
# Lifespan
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global app_state

    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info("Starting Bill Tracker server...")

    if app_state is None:
        app_state = AppState(settings)

    logger.info(f"Server ready on {settings.host}:{settings.port}")
    logger.info(f"Active store: {app_state.store.name}")
    logger.info(f"Strict transitions: {settings.strict_transitions}")

    yield

    logger.info("Shutting down...")


# ============================================================================
# Application Factory
# ============================================================================


_ERROR_STATUS = {
    RecordNotFoundError: 404,
    PermissionDeniedError: 403,
    ConflictError: 409,
    DuplicateSubmissionError: 409,
    PersistenceError: 503,
}


async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 400
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


async def transition_error_handler(request: Request, exc: TransitionError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": exc.to_dict()})


def create_app() -> FastAPI:
    """Create FastAPI application."""
    app = FastAPI(
        title="Bill Tracker",
        description="Capital expenditure and vendor billing tracker",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_exception_handler(TrackerError, tracker_error_handler)
    app.add_exception_handler(TransitionError, transition_error_handler)

    app.add_api_route("/health", health_check, methods=["GET"])
    app.add_api_route("/records", list_records, methods=["GET"])
    app.add_api_route("/records", create_record, methods=["POST"], status_code=201)
    app.add_api_route("/records/{record_id}", get_record, methods=["GET"])
    app.add_api_route("/records/{record_id}/status", advance_status, methods=["POST"])
    app.add_api_route(
        "/records/{record_id}/payment-status", set_payment_status, methods=["PUT"]
    )
    app.add_api_route("/notifications", list_notifications, methods=["GET"])
    app.add_api_route(
        "/notifications/{notification_id}/read", mark_notification_read, methods=["POST"]
    )
    app.add_api_route("/stats", get_stats, methods=["GET"])
    app.add_api_route("/settings/budget", get_budget, methods=["GET"])
    app.add_api_route("/settings/budget", update_budget, methods=["PUT"])
    app.add_api_route("/vendors", list_vendors, methods=["GET"])
    app.add_api_route("/vendors", create_vendor, methods=["POST"], status_code=201)
    app.add_api_route("/vendors/{vendor_id}", delete_vendor, methods=["DELETE"], status_code=204)
    app.add_api_route("/capex", list_capex, methods=["GET"])
    app.add_api_route("/capex", create_capex, methods=["POST"], status_code=201)
    app.add_api_route("/api/notify", relay_notify, methods=["POST"])
    app.add_api_route("/api/send-email", send_email, methods=["POST"])
    app.add_api_websocket_route("/ws", notifications_ws)

    return app


# ============================================================================
# Helpers
# ============================================================================


def to_response(record: BillingRecord) -> RecordResponse:
    """Attach derived progress to a record."""
    return RecordResponse(
        **record.model_dump(),
        stage_index=stage_index(record.invoice_status),
        progress_percent=progress_percent(record.invoice_status),
        progress=[ProgressStep(**step) for step in progress_steps(record.invoice_status)],
    )


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ============================================================================
# Endpoints
# ============================================================================


def health_check() -> HealthResponse:
    """Health check endpoint."""
    state = get_state()
    return HealthResponse(
        status="healthy",
        version=VERSION,
        store=state.store.name,
        records_count=len(state.store.list_records()),
        subscribers=state.feed.subscriber_count,
        notification_poll_interval=state.settings.notification_poll_interval,
    )


def list_records(actor: Actor = Depends(get_actor)) -> list[RecordResponse]:
    """List the records visible to the caller."""
    dashboard = get_state().dashboard_for(actor)
    return [to_response(record) for record in dashboard.refresh().records]


def get_record(record_id: str, actor: Actor = Depends(get_actor)) -> RecordResponse:
    """Get a single record."""
    record = get_state().store.get_record(record_id)
    if record is None or not can_view(record, actor):
        raise HTTPException(status_code=404, detail="Record not found")
    return to_response(record)


def create_record(
    request: CreateRecordRequest,
    actor: Actor = Depends(get_actor),
) -> CreateRecordResponse:
    """Create a billing record."""
    dashboard = get_state().dashboard_for(actor)
    record = dashboard.create_record(BillingRecord(**request.model_dump()))
    return CreateRecordResponse(
        record=to_response(record),
        warning=dashboard.state.last_warning,
    )


def advance_status(
    record_id: str,
    request: AdvanceRequest,
    actor: Actor = Depends(get_actor),
) -> AdvanceResponse:
    """Advance a record's invoice status."""
    dashboard = get_state().dashboard_for(actor)
    result = dashboard.advance(record_id, request.status, remark=request.remark)
    return AdvanceResponse(
        record=to_response(result.record),
        previous_status=result.previous_status,
        notification=result.notification,
    )


def set_payment_status(
    record_id: str,
    request: PaymentStatusRequest,
    actor: Actor = Depends(get_actor),
) -> RecordResponse:
    """Set a record's payment status."""
    dashboard = get_state().dashboard_for(actor)
    return to_response(dashboard.set_payment_status(record_id, request.payment_status))


def list_notifications(
    since: Optional[datetime] = None,
    limit: int = 50,
) -> list[AppNotification]:
    """List notifications, newest first."""
    return get_state().store.list_notifications(since=_naive_utc(since), limit=limit)


def mark_notification_read(
    notification_id: str,
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    get_state().dashboard_for(actor).mark_notification_read(notification_id)
    return {"success": True}


def get_stats(actor: Actor = Depends(get_actor)) -> DashboardStats:
    """Budget statistics over the caller's visible records."""
    return get_state().dashboard_for(actor).refresh().stats


def get_budget() -> BudgetSettings:
    return BudgetSettings.from_settings(get_state().store.get_settings())


def update_budget(
    request: BudgetSettings,
    actor: Actor = Depends(get_actor),
) -> BudgetSettings:
    """Update budget settings (admin only)."""
    if actor.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Admin only")

    store = get_state().store
    for key, value in request.to_settings().items():
        store.put_setting(key, value)
    logger.info("Budget settings updated")
    return BudgetSettings.from_settings(store.get_settings())


def list_vendors() -> list[Vendor]:
    return get_state().store.list_vendors()


def create_vendor(
    request: CreateVendorRequest,
    actor: Actor = Depends(get_actor),
) -> Vendor:
    _require_admin_or_staff(actor)
    return get_state().store.add_vendor(Vendor(**request.model_dump()))


def delete_vendor(vendor_id: str, actor: Actor = Depends(get_actor)) -> None:
    _require_admin_or_staff(actor)
    get_state().store.delete_vendor(vendor_id)


def list_capex() -> list[CapexEntry]:
    return get_state().store.list_capex_entries()


def create_capex(
    request: CreateCapexRequest,
    actor: Actor = Depends(get_actor),
) -> CreateCapexResponse:
    """Add a CAPEX entry and evaluate the advisory CAPEX limits."""
    _require_admin_or_staff(actor)
    store = get_state().store
    entry = store.add_capex_entry(CapexEntry(**request.model_dump()))
    warning = capex_budget_warning(
        store.list_capex_entries(),
        BudgetSettings.from_settings(store.get_settings()),
    )
    if warning:
        logger.warning(warning)
    return CreateCapexResponse(entry=entry, warning=warning)


async def relay_notify(request: NotifyRequest) -> dict[str, Any]:
    """Broadcast an event to every connected subscriber."""
    delivered = get_state().feed.publish(
        make_event(request.type, request.message, request.data)
    )
    return {"success": True, "delivered": delivered}


async def send_email(request: EmailRequest) -> dict[str, Any]:
    """Mock email relay; only logs the message."""
    logger.info(f"[MOCK EMAIL] To: {request.to}, Subject: {request.subject}")
    return {"success": True, "message": "Email sent successfully (mocked)"}


async def stop_forwarding(task: asyncio.Task) -> None:
    """Cancel a feed forwarding task and collect its outcome."""
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.warning(f"Feed forwarding stopped after error: {e}")


async def notifications_ws(websocket: WebSocket) -> None:
    """Stream feed events to a WebSocket client."""
    state = get_state()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    # Subscribe before accepting so no event published after connect is missed
    unsubscribe = state.feed.subscribe(
        lambda event: loop.call_soon_threadsafe(queue.put_nowait, event)
    )
    await websocket.accept()
    logger.info(f"Feed client connected. Total clients: {state.feed.subscriber_count}")

    async def forward() -> None:
        while True:
            event = await queue.get()
            await websocket.send_json(event)

    forward_task = asyncio.create_task(forward())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect as e:
        logger.debug(f"Feed client closed with code {e.code}")
    finally:
        await stop_forwarding(forward_task)
        unsubscribe()
        logger.info(f"Feed client disconnected. Total clients: {state.feed.subscriber_count}")


# ============================================================================
# App Instance
# ============================================================================


app = create_app()
