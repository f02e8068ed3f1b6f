"""Action routes — writes forwarded to the domain API.

Each action is gated on its module, blocked while payments are frozen when it
moves money, and recorded in the audit trail.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from scn_console.middleware.auth import get_domain_api, require_module, write_audit_log
from scn_console.rbac import Module
from scn_console.redaction import (
    PAYMENTS_FROZEN_MESSAGE,
    payment_actions_allowed,
    render_message,
    resolve_delivery_type,
)
from scn_console.services.domain_api import DomainApiClient, UpstreamError
from scn_console.session import SessionSnapshot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/actions", tags=["actions"])

PAYMENT_STATUS = "payment_processed"


class AllocationRequest(BaseModel):
    program_id: str
    amount: float | None = None
    notes: str | None = None


class WaiverDecision(BaseModel):
    notes: str | None = None


class RequisitionStatusUpdate(BaseModel):
    status: str
    notes: str | None = None


class MessageSend(BaseModel):
    subject: str
    content: str
    type: str = "email"
    recipient_ids: list[str] = []
    restricted: bool = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def ensure_payments_allowed(snapshot: SessionSnapshot) -> None:
    if not payment_actions_allowed(snapshot):
        raise HTTPException(status_code=status.HTTP_423_LOCKED, detail=PAYMENTS_FROZEN_MESSAGE)


async def _forward(
    request: Request,
    snapshot: SessionSnapshot,
    action: str,
    resource_type: str,
    resource_id: str | None,
    call,
    details: dict | None = None,
) -> Any:
    """Await an upstream write, mapping failures to 502 and auditing success."""
    try:
        result = await call
    except UpstreamError as exc:
        logger.warning("Action %s on %s failed upstream: %s", action, resource_id, exc.message)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)
    write_audit_log(request, action, snapshot, resource_type, resource_id, details)
    if isinstance(result, dict) and "data" in result:
        return result["data"]
    return result


# ---------------------------------------------------------------------------
# Donations
# ---------------------------------------------------------------------------


@router.post("/donations/{donation_id}/allocate")
async def allocate_donation(
    donation_id: str,
    body: AllocationRequest,
    request: Request,
    snapshot: SessionSnapshot = Depends(require_module(Module.DONATIONS)),
    api: DomainApiClient = Depends(get_domain_api),
):
    ensure_payments_allowed(snapshot)
    payload = body.model_dump(exclude_none=True)
    return await _forward(
        request, snapshot, "donation.allocate", "donation", donation_id,
        api.post_action(f"donations/{donation_id}/allocate", snapshot, payload),
        payload,
    )


@router.post("/donations/{donation_id}/receipt")
async def generate_receipt(
    donation_id: str,
    request: Request,
    snapshot: SessionSnapshot = Depends(require_module(Module.DONATIONS)),
    api: DomainApiClient = Depends(get_domain_api),
):
    ensure_payments_allowed(snapshot)
    return await _forward(
        request, snapshot, "donation.receipt", "donation", donation_id,
        api.post_action(f"donations/{donation_id}/receipt", snapshot),
    )


# ---------------------------------------------------------------------------
# Fee waivers
# ---------------------------------------------------------------------------


@router.post("/fees/waivers/{waiver_id}/approve")
async def approve_waiver(
    waiver_id: str,
    body: WaiverDecision,
    request: Request,
    snapshot: SessionSnapshot = Depends(require_module(Module.FEES)),
    api: DomainApiClient = Depends(get_domain_api),
):
    ensure_payments_allowed(snapshot)
    payload = body.model_dump(exclude_none=True)
    return await _forward(
        request, snapshot, "fee_waiver.approve", "fee_waiver", waiver_id,
        api.post_action(f"fees/waivers/{waiver_id}/approve", snapshot, payload),
        payload,
    )


@router.post("/fees/waivers/{waiver_id}/reject")
async def reject_waiver(
    waiver_id: str,
    body: WaiverDecision,
    request: Request,
    snapshot: SessionSnapshot = Depends(require_module(Module.FEES)),
    api: DomainApiClient = Depends(get_domain_api),
):
    ensure_payments_allowed(snapshot)
    payload = body.model_dump(exclude_none=True)
    return await _forward(
        request, snapshot, "fee_waiver.reject", "fee_waiver", waiver_id,
        api.post_action(f"fees/waivers/{waiver_id}/reject", snapshot, payload),
        payload,
    )


# ---------------------------------------------------------------------------
# Procurement
# ---------------------------------------------------------------------------


@router.put("/procurement/requisitions/{requisition_id}/status")
async def update_requisition_status(
    requisition_id: str,
    body: RequisitionStatusUpdate,
    request: Request,
    snapshot: SessionSnapshot = Depends(require_module(Module.PROCUREMENT)),
    api: DomainApiClient = Depends(get_domain_api),
):
    """Move a requisition along its workflow.  Only the payment step is frozen."""
    if body.status == PAYMENT_STATUS:
        ensure_payments_allowed(snapshot)
    payload = body.model_dump(exclude_none=True)
    return await _forward(
        request, snapshot, "requisition.status", "requisition", requisition_id,
        api.put_action(f"requisitions/{requisition_id}/status", snapshot, payload),
        payload,
    )


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------


@router.post("/messaging/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    body: MessageSend,
    request: Request,
    snapshot: SessionSnapshot = Depends(require_module(Module.MESSAGING)),
    api: DomainApiClient = Depends(get_domain_api),
):
    """Send an outbound message.

    Restricted alerts, and anything sent during reduced operations, are
    delivered through the portal whatever channel was asked for.
    """
    payload = body.model_dump()
    payload["type"] = resolve_delivery_type(body.type, snapshot, restricted=body.restricted)
    result = await _forward(
        request, snapshot, "message.send", "message", None,
        api.create_item("messages", snapshot, payload),
        {"requested_type": body.type, "type": payload["type"], "restricted": body.restricted},
    )
    return render_message(result) if isinstance(result, dict) else result
