from fastapi import FastAPI, HTTPException, Depends, Header, Request
import time
import json
import asyncio
import logging
from typing import List
from sse_starlette.sse import EventSourceResponse

from claim_ledger.config import settings
from claim_ledger.domain.services import ClaimLedgerService
from claim_ledger.domain.errors import (
    AuthorizationError,
    ConflictError,
    DomainError,
    IntegrityError,
    NotFoundError,
    StateError,
    ValidationError,
)
from claim_ledger.adapters.http.views import (
    ClaimRecordView,
    ClaimView,
    CreateEventRequest,
    EventView,
    IssueTicketRequest,
    ProofView,
    RedeemRequest,
    RootView,
    SetActiveRequest,
    TicketView,
    VerifyRequest,
    VerifyView,
    from_hex,
)
from claim_ledger.bootstrap import get_ledger_service, get_broadcaster
from claim_ledger.core.broadcaster import ClaimBroadcaster

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Claim Ledger",
    description="Single-use claim tickets committed to a verifiable Merkle accumulator",
    version="0.1.0",
)


def _http_error(e: DomainError) -> HTTPException:
    if isinstance(e, ValidationError):
        status = 400
    elif isinstance(e, AuthorizationError):
        status = 403
    elif isinstance(e, NotFoundError):
        status = 404
    elif isinstance(e, (StateError, ConflictError)):
        status = 409
    elif isinstance(e, IntegrityError):
        status = 422
    else:
        status = 500
    return HTTPException(status_code=status, detail={"code": e.code, "message": str(e)})


def get_principal(x_principal: str = Header(...)) -> bytes:
    """Invoking identity, supplied by the fronting auth layer as hex."""
    try:
        return from_hex(x_principal, "X-Principal")
    except ValidationError as e:
        raise _http_error(e)


@app.get("/health")
def health_check():
    return {"status": "ok", "service": "claim-ledger", "timestamp": time.time()}


@app.get("/version")
def version():
    """Version information"""
    return {
        "version": app.version,
        "config_version": settings.config_version,
        "config_digest": settings.config_digest,
        "service": "claim-ledger",
    }


@app.post("/events", response_model=EventView)
def create_event(
    body: CreateEventRequest,
    principal: bytes = Depends(get_principal),
    service: ClaimLedgerService = Depends(get_ledger_service),
):
    try:
        event = service.create_event(principal, body.capacity, name=body.name, height=body.height)
    except DomainError as e:
        raise _http_error(e)
    return EventView.from_event(event)


@app.get("/events/{event_id}", response_model=EventView)
def get_event(event_id: str, service: ClaimLedgerService = Depends(get_ledger_service)):
    try:
        return EventView.from_event(service.get_event(from_hex(event_id, "event_id")))
    except DomainError as e:
        raise _http_error(e)


@app.post("/events/{event_id}/active", response_model=EventView)
def set_active(
    event_id: str,
    body: SetActiveRequest,
    principal: bytes = Depends(get_principal),
    service: ClaimLedgerService = Depends(get_ledger_service),
):
    try:
        event = service.set_active(from_hex(event_id, "event_id"), principal, body.active)
    except DomainError as e:
        raise _http_error(e)
    return EventView.from_event(event)


@app.get("/events/{event_id}/root", response_model=RootView)
def get_root(event_id: str, service: ClaimLedgerService = Depends(get_ledger_service)):
    try:
        state = service.get_root(from_hex(event_id, "event_id"))
    except DomainError as e:
        raise _http_error(e)
    return RootView(event_id=event_id, root=state.root.hex(), leaf_count=state.leaf_count, height=state.height)


@app.post("/events/{event_id}/tickets", response_model=TicketView)
def issue_ticket(
    event_id: str,
    body: IssueTicketRequest,
    principal: bytes = Depends(get_principal),
    service: ClaimLedgerService = Depends(get_ledger_service),
):
    try:
        ticket = service.issue_ticket(
            from_hex(event_id, "event_id"),
            from_hex(body.secret_commitment, "secret_commitment"),
            body.expires_at,
            authority=principal,
            label=body.label,
        )
    except DomainError as e:
        raise _http_error(e)
    return TicketView.from_ticket(ticket)


@app.get("/events/{event_id}/tickets", response_model=List[TicketView])
def list_tickets(event_id: str, service: ClaimLedgerService = Depends(get_ledger_service)):
    try:
        tickets = service.list_tickets(from_hex(event_id, "event_id"))
    except DomainError as e:
        raise _http_error(e)
    return [TicketView.from_ticket(t) for t in tickets]


@app.get("/tickets/{ticket_id}", response_model=TicketView)
def get_ticket(ticket_id: str, service: ClaimLedgerService = Depends(get_ledger_service)):
    try:
        return TicketView.from_ticket(service.get_ticket(from_hex(ticket_id, "ticket_id")))
    except DomainError as e:
        raise _http_error(e)


@app.post("/tickets/{ticket_id}/redeem", response_model=ClaimView)
async def redeem_ticket(
    ticket_id: str,
    body: RedeemRequest,
    principal: bytes = Depends(get_principal),
    service: ClaimLedgerService = Depends(get_ledger_service),
):
    try:
        claimant = from_hex(body.claimant, "claimant") if body.claimant is not None else principal
        record, proof = await service.redeem_ticket(
            from_hex(ticket_id, "ticket_id"), body.secret, claimant, invoker=principal
        )
    except DomainError as e:
        logger.warning(f"Redemption of ticket {ticket_id} rejected: {e.code}")
        raise _http_error(e)
    return ClaimView(
        ticket_id=ticket_id,
        record=ClaimRecordView.from_record(record),
        proof=ProofView.from_proof(proof),
    )


@app.get("/tickets/{ticket_id}/proof", response_model=ClaimView)
def get_proof(ticket_id: str, service: ClaimLedgerService = Depends(get_ledger_service)):
    try:
        record, proof = service.get_proof(from_hex(ticket_id, "ticket_id"))
    except DomainError as e:
        raise _http_error(e)
    return ClaimView(
        ticket_id=ticket_id,
        record=ClaimRecordView.from_record(record),
        proof=ProofView.from_proof(proof),
    )


@app.post("/verify", response_model=VerifyView)
def verify_claim(body: VerifyRequest, service: ClaimLedgerService = Depends(get_ledger_service)):
    try:
        record = body.record.to_record()
        sibling_path = [from_hex(h, "sibling_path") for h in body.sibling_path]
        expected_root = from_hex(body.expected_root, "expected_root")
    except DomainError as e:
        raise _http_error(e)
    return VerifyView(valid=service.verify_claim(record, body.index, sibling_path, expected_root))


@app.get("/events/{event_id}/claims/stream")
async def stream_claims(
    event_id: str,
    request: Request,
    broadcaster: ClaimBroadcaster = Depends(get_broadcaster),
):
    """
    Stream committed claims for one event via SSE.

    - First event is always 'meta' with version and connected_at
    - Each committed claim is a 'claim' event carrying record and proof
    - Errors as 'error' event followed by stream termination
    """
    try:
        event_key = from_hex(event_id, "event_id")
    except DomainError as e:
        raise _http_error(e)

    async def event_generator():
        try:
            from datetime import datetime, timezone
            connected_at = datetime.now(timezone.utc).isoformat()
            yield {
                "event": "meta",
                "data": json.dumps({"version": "1", "connected_at": connected_at}),
            }

            async for record, proof in broadcaster.subscribe(event_key):
                if await request.is_disconnected():
                    break
                view = ClaimView(
                    record=ClaimRecordView.from_record(record),
                    proof=ProofView.from_proof(proof),
                )
                yield {"event": "claim", "data": view.model_dump_json(exclude_none=True)}

        except asyncio.CancelledError:
            # Client disconnected - normal cleanup via cancellation
            pass
        except Exception as e:
            logger.error(f"SSE internal error: {e}")
            yield {
                "event": "error",
                "data": json.dumps({"code": "CLAIM_LEDGER_SSE_INTERNAL", "message": str(e)}),
            }

    return EventSourceResponse(event_generator())
