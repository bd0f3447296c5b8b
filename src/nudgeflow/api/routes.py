"""
Control routes for the scheduler and the health monitor, plus read-only thread views.

Every handler reads the shared runtime from `app.state.runtime`.
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field

from nudgeflow.application.scheduler import TickResult
from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.entities.thread import Thread
from nudgeflow.domain.errors import PersistenceError
from nudgeflow.infrastructure.runtime import Runtime

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    store: str


class SchedulerActionResponse(BaseModel):
    action: str
    affected: int
    status: dict[str, Any]


class TickResponse(BaseModel):
    """Outcome of one reconcile + reminder pass."""

    account_id: str
    ran: bool
    error: str | None = None
    new_emails: int = 0
    new_threads: int = 0
    skipped: int = 0
    self_reminders_sent: int = 0
    vendor_nudges_sent: int = 0
    outside_working_hours: bool = False
    reconcile_outcomes: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, result: TickResult) -> "TickResponse":
        response = cls(account_id=result.account_id, ran=result.ran, error=result.error)
        if result.reconcile is not None:
            response.new_emails = result.reconcile.new_emails
            response.new_threads = result.reconcile.new_threads
            response.skipped = result.reconcile.skipped
            response.reconcile_outcomes = dict(result.reconcile.outcomes)
        if result.reminders is not None:
            response.self_reminders_sent = result.reminders.self_reminders_sent
            response.vendor_nudges_sent = result.reminders.vendor_nudges_sent
            response.outside_working_hours = result.reminders.outside_working_hours
        return response


class CheckResponse(BaseModel):
    checked_at: str
    system_health: str
    issues: list[dict[str, Any]]


class ThreadResponse(BaseModel):
    """One tracked vendor conversation."""

    id: int
    account_id: str
    subject: str
    normalized_subject: str
    gateway: str
    status: str
    last_actor: str
    vendor_address: str
    vendor_name: str
    last_activity_at: datetime
    last_inbound_at: datetime | None = None
    last_outbound_at: datetime | None = None
    self_reminder_count: int
    vendor_nudge_count: int
    is_hot: bool
    is_completed: bool
    is_snoozed: bool
    snoozed_until: datetime | None = None

    @classmethod
    def from_thread(cls, thread: Thread) -> "ThreadResponse":
        return cls(
            id=thread.id,
            account_id=thread.account_id,
            subject=thread.subject,
            normalized_subject=thread.normalized_subject,
            gateway=thread.gateway,
            status=thread.status.value,
            last_actor=thread.last_actor.value,
            vendor_address=thread.vendor_address,
            vendor_name=thread.vendor_name,
            last_activity_at=thread.last_activity_at,
            last_inbound_at=thread.last_inbound_at,
            last_outbound_at=thread.last_outbound_at,
            self_reminder_count=thread.self_reminder_count,
            vendor_nudge_count=thread.vendor_nudge_count,
            is_hot=thread.is_hot,
            is_completed=thread.is_completed,
            is_snoozed=thread.is_snoozed,
            snoozed_until=thread.snoozed_until,
        )


class EmailResponse(BaseModel):
    message_id: str
    direction: str
    subject: str
    sender_address: str
    sender_name: str
    recipients: list[str]
    cc: list[str]
    observed_at: datetime
    body_preview: str
    gateway: str | None = None

    @classmethod
    def from_email(cls, email: EmailRecord) -> "EmailResponse":
        return cls(
            message_id=email.message_id,
            direction=email.direction.value,
            subject=email.subject,
            sender_address=email.sender_address,
            sender_name=email.sender_name,
            recipients=list(email.recipients),
            cc=list(email.cc),
            observed_at=email.observed_at,
            body_preview=email.body_preview,
            gateway=email.gateway,
        )


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Runtime not initialized")
    return runtime


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(runtime: Runtime = Depends(get_runtime)) -> HealthResponse:
    try:
        runtime.store.ping()
        store = "healthy"
    except PersistenceError as e:
        logger.warning(f"Store health check failed: {e}")
        store = f"unhealthy: {e}"

    return HealthResponse(
        status="healthy" if store == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=runtime.settings.app_version,
        store=store,
    )


# ============================================================================
# Scheduler
# ============================================================================


@router.get("/scheduler/status", tags=["scheduler"])
async def scheduler_status(runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    return runtime.scheduler.get_status()


@router.post("/scheduler/start", response_model=SchedulerActionResponse, tags=["scheduler"])
def scheduler_start(runtime: Runtime = Depends(get_runtime)) -> SchedulerActionResponse:
    count = runtime.scheduler.start_all()
    return SchedulerActionResponse(action="start", affected=count, status=runtime.scheduler.get_status())


@router.post("/scheduler/stop", response_model=SchedulerActionResponse, tags=["scheduler"])
def scheduler_stop(runtime: Runtime = Depends(get_runtime)) -> SchedulerActionResponse:
    count = runtime.scheduler.stop_all()
    return SchedulerActionResponse(action="stop", affected=count, status=runtime.scheduler.get_status())


@router.post("/scheduler/restart", response_model=SchedulerActionResponse, tags=["scheduler"])
def scheduler_restart(runtime: Runtime = Depends(get_runtime)) -> SchedulerActionResponse:
    count = runtime.scheduler.restart()
    return SchedulerActionResponse(action="restart", affected=count, status=runtime.scheduler.get_status())


@router.post("/scheduler/accounts/{account_id}/start", tags=["scheduler"])
def account_start(account_id: str, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    try:
        handle = runtime.scheduler.start_for_account(account_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown account: {account_id}")
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {
        "account_id": handle.account_id,
        "job_id": handle.job_id,
        "frequency_minutes": handle.frequency_minutes,
    }


@router.post("/scheduler/accounts/{account_id}/stop", tags=["scheduler"])
def account_stop(account_id: str, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    if not runtime.scheduler.stop_for_account(account_id):
        raise HTTPException(status_code=404, detail=f"No schedule for account: {account_id}")
    return {"account_id": account_id, "stopped": True}


@router.post("/scheduler/accounts/{account_id}/run", response_model=TickResponse, tags=["scheduler"])
def account_run(account_id: str, runtime: Runtime = Depends(get_runtime)) -> TickResponse:
    if runtime.store.get_account(account_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown account: {account_id}")
    result = runtime.scheduler.run_now(account_id)
    if result.error == "busy":
        raise HTTPException(status_code=409, detail="A run for this account is already in progress")
    return TickResponse.from_result(result)


# ============================================================================
# Monitor
# ============================================================================


@router.get("/monitor/status", tags=["monitor"])
async def monitor_status(runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    return runtime.monitor.get_status()


@router.post("/monitor/check", response_model=CheckResponse, tags=["monitor"])
def monitor_check(send_alerts: bool = False, runtime: Runtime = Depends(get_runtime)) -> CheckResponse:
    report = runtime.monitor.run_check(send_alerts=send_alerts)
    return CheckResponse(
        checked_at=report.checked_at.isoformat(),
        system_health=report.health.value,
        issues=[issue.to_dict() for issue in report.issues],
    )


# ============================================================================
# Threads
# ============================================================================


@router.get("/accounts/{account_id}/threads", response_model=list[ThreadResponse], tags=["threads"])
def account_threads(
    account_id: str, active_only: bool = False, runtime: Runtime = Depends(get_runtime)
) -> list[ThreadResponse]:
    if runtime.store.get_account(account_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown account: {account_id}")
    if active_only:
        threads = runtime.store.list_active_threads(account_id)
    else:
        threads = runtime.store.list_threads(account_id)
    return [ThreadResponse.from_thread(t) for t in threads]


@router.get("/threads/{thread_id}/emails", response_model=list[EmailResponse], tags=["threads"])
def thread_emails(thread_id: int, runtime: Runtime = Depends(get_runtime)) -> list[EmailResponse]:
    if runtime.store.get_thread(thread_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown thread: {thread_id}")
    return [EmailResponse.from_email(e) for e in runtime.store.list_thread_emails(thread_id)]
