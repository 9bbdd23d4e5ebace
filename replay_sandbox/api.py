# replay_sandbox/api.py
"""
FastAPI endpoints over ExecutionEngine.

Endpoints:
- GET    /health
- POST   /runs                         - start or resume an interactive run
- DELETE /runs/{context_id}            - abandon a run
- POST   /batch                        - grade a program against test cases
- POST   /challenges/{challenge_id}    - load a program into a challenge session
- POST   /challenges/{challenge_id}/invoke
- DELETE /challenges/{challenge_id}

Program outcomes (errors, timeouts, input requests) are normal 200 responses;
only engine failures map to HTTP errors.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from .engine import ExecutionEngine
from .errors import (
    ChallengeError,
    InitializationFailure,
    NotAwaitingInputError,
    RemoteExecutionError,
    SandboxError,
    SessionBusyError,
    UnknownSessionError,
)
from .models import BatchOptions, BatchSummary, ExecutionResult, TestCase
from .execution.grading import summarize

router = APIRouter()


class RunRequest(BaseModel):
    source: str
    prior_inputs: List[str] = Field(default_factory=list)
    new_input: Optional[str] = None
    context_id: str = "default"
    prepend: str = ""
    postpend: str = ""


class BatchRequest(BaseModel):
    source: str
    test_cases: List[TestCase]
    options: BatchOptions = Field(default_factory=BatchOptions)


class ChallengeLoadRequest(BaseModel):
    source: str


class ChallengeInvokeRequest(BaseModel):
    function: str
    args: List[Any] = Field(default_factory=list)


def _http_error(e: SandboxError) -> HTTPException:
    if isinstance(e, (SessionBusyError, NotAwaitingInputError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, UnknownSessionError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ChallengeError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, InitializationFailure):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, RemoteExecutionError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _engine(request: Request) -> ExecutionEngine:
    return request.app.state.engine


@router.get("/health")
def health():
    return {"ok": True}


@router.post("/runs", response_model=ExecutionResult)
def submit_run(body: RunRequest, request: Request):
    try:
        return _engine(request).submit_run(
            body.source,
            body.prior_inputs,
            body.new_input,
            context_id=body.context_id,
            prepend=body.prepend,
            postpend=body.postpend,
        )
    except SandboxError as e:
        raise _http_error(e)


@router.delete("/runs/{context_id}")
def reset_run(context_id: str, request: Request):
    _engine(request).reset_run(context_id)
    return {"ok": True}


@router.post("/batch", response_model=BatchSummary)
def run_batch(body: BatchRequest, request: Request):
    try:
        results = _engine(request).run_batch(body.source, body.test_cases, body.options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return summarize(results)


@router.post("/challenges/{challenge_id}")
def load_challenge(challenge_id: str, body: ChallengeLoadRequest, request: Request):
    try:
        stdout = _engine(request).challenge(challenge_id).initialize(body.source)
    except SandboxError as e:
        raise _http_error(e)
    return {"ok": True, "stdout": stdout}


@router.post("/challenges/{challenge_id}/invoke")
def invoke_challenge(challenge_id: str, body: ChallengeInvokeRequest, request: Request):
    session = _engine(request).challenge(challenge_id)
    try:
        value = session.invoke(body.function, body.args)
    except SandboxError as e:
        raise _http_error(e)
    return {"value": value, "stdout": session.last_stdout, "invocations": session.invocations}


@router.delete("/challenges/{challenge_id}")
def close_challenge(challenge_id: str, request: Request):
    _engine(request).close_challenge(challenge_id)
    return {"ok": True}


def create_app(engine: Optional[ExecutionEngine] = None) -> FastAPI:
    """Build the API app. The engine is closed when the app shuts down."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "engine", None) is None:
            app.state.engine = ExecutionEngine()
        yield
        app.state.engine.close()

    app = FastAPI(title="replay-sandbox", lifespan=lifespan)
    app.state.engine = engine
    app.include_router(router)
    return app
