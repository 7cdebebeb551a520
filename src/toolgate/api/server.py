"""
Toolgate API Server

FastAPI backend for chat front ends. A turn is streamed as NDJSON, one
pipeline event per line. Approval cards are listed per conversation and
resolved through REST endpoints.

Usage:
    uvicorn toolgate.api.server:app --reload
"""

from __future__ import annotations

import json
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from toolgate import Toolgate, __version__
from toolgate.core.models import ApprovalStatus, PolicyType
from toolgate.exceptions import ApprovalNotFoundError, InvalidApprovalStateError, ToolgateError
from toolgate.logging import get_logger

logger = get_logger("toolgate.api")


# ─── Request/Response Models ────────────────────────────────

class TurnRequest(BaseModel):
    session_id: str
    message: str
    message_id: str | None = None


class ResolveRequest(BaseModel):
    actor: str = "user"
    message: str | None = None
    execute: bool = True


class DetectRequest(BaseModel):
    message: str


class StatusResponse(BaseModel):
    tools: int
    policies: int
    audit_records: int
    version: str = __version__


# ─── Gate Manager ────────────────────────────────────────────

class GateManager:
    """Holds the Toolgate instance the endpoints work against."""

    def __init__(self, db_url: str | None = None):
        self.db_url = db_url
        self._gate: Toolgate | None = None

    @property
    def gate(self) -> Toolgate:
        if self._gate is None:
            self._gate = Toolgate(db_url=self.db_url)
        return self._gate

    @gate.setter
    def gate(self, value: Toolgate | None) -> None:
        self._gate = value

    def close(self) -> None:
        if self._gate is not None:
            self._gate.close()
            self._gate = None

    async def stream(self, request: TurnRequest) -> AsyncIterator[str]:
        async for event in self.gate.stream_turn(
            request.session_id, request.message, message_id=request.message_id
        ):
            yield json.dumps(event.to_dict(), default=str) + "\n"

    @property
    def status(self) -> StatusResponse:
        gate = self.gate
        return StatusResponse(
            tools=len(gate.registry),
            policies=len(gate.policies.get_all_policies()),
            audit_records=len(gate.audit_log),
        )


# ─── App ─────────────────────────────────────────────────────

manager = GateManager(db_url=os.environ.get("TOOLGATE_DATABASE_URL"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the gate at startup, so a bad provider table fails before serving."""
    gate = manager.gate
    logger.info(
        "Toolgate API ready",
        extra={"tools": len(gate.registry), "persistent": manager.db_url is not None},
    )
    yield
    manager.close()


app = FastAPI(
    title="Toolgate API",
    description="Tool-aware orchestration with risk-gated execution",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── REST Endpoints ──────────────────────────────────────────

@app.get("/api/status")
async def get_status() -> StatusResponse:
    return manager.status


@app.post("/api/turns")
async def run_turn(request: TurnRequest) -> StreamingResponse:
    """Stream one turn as NDJSON pipeline events."""
    return StreamingResponse(manager.stream(request), media_type="application/x-ndjson")


@app.get("/api/conversations/{conversation_id}/approvals")
async def get_approvals(conversation_id: str) -> dict:
    """Pending approval cards of a conversation, newest first."""
    approvals = manager.gate.approvals
    pending = approvals.get_pending_for_conversation(conversation_id)
    return {
        "approvals": [approvals.format_for_chat(r) for r in pending],
        "total": len(pending),
    }


@app.get("/api/approvals/{request_id}")
async def get_approval(request_id: str) -> dict:
    approvals = manager.gate.approvals
    try:
        request = approvals.get_request(request_id)
    except ApprovalNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return approvals.format_for_chat(request)


@app.post("/api/approvals/{request_id}/approve")
async def approve(request_id: str, body: ResolveRequest) -> dict:
    """Approve a pending request and, unless told otherwise, run its tool call."""
    gate = manager.gate
    try:
        request = gate.approvals.approve_request(request_id, body.actor, message=body.message)
    except ApprovalNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except InvalidApprovalStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    response: dict = {"status": request.status.value, "request_id": request_id}
    if body.execute and request.status == ApprovalStatus.APPROVED:
        try:
            result = await gate.run_approved(request_id)
        except ToolgateError as e:
            logger.warning("Approved operation could not run: %s", str(e), extra={"approval_id": request_id})
            response["execution_error"] = str(e)
        else:
            response["result"] = result.model_dump(mode="json")
    return response


@app.post("/api/approvals/{request_id}/reject")
async def reject(request_id: str, body: ResolveRequest) -> dict:
    try:
        request = manager.gate.approvals.reject_request(request_id, body.actor, message=body.message)
    except ApprovalNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except InvalidApprovalStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return {"status": request.status.value, "request_id": request_id}


@app.post("/api/approvals/detect")
async def detect_approval(body: DetectRequest) -> dict:
    """Classify a chat message as approve, reject or neither."""
    return {"intent": manager.gate.approvals.detect_approval_in_message(body.message)}


@app.get("/api/policies")
async def get_policies(policy_type: PolicyType | None = None) -> dict:
    registry = manager.gate.policies
    policies = (
        registry.get_policies_by_type(policy_type) if policy_type else registry.get_all_policies()
    )
    return {
        "policies": [p.model_dump(mode="json") for p in policies],
        "total": len(policies),
    }


@app.get("/api/audit/verify")
async def verify_audit() -> dict:
    audit_log = manager.gate.audit_log
    ok, message = audit_log.verify_integrity()
    return {"valid": ok, "message": message, "records": len(audit_log)}
