# MIT License
# Copyright (c) 2025 Hashborn

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field
from typing import Optional
from ..protocol.types.account import U64_MAX
from ..protocol.types.common import (
    DecodeError, InvalidIdentity, NotFound, NotReady, ProtocolError, Rejected, SubmissionError,
)
from ..engine.dispatcher import CounterEngine
from uvicorn import Config, Server
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="Ephemeral Rollup Counter API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
engine: Optional[CounterEngine] = None

class SetRequest(BaseModel):
    value: int = Field(..., ge=0, le=U64_MAX)

class TxResponse(BaseModel):
    signature: str
    status: str = "confirmed"

def _engine() -> CounterEngine:
    if not engine:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine

def _http_error(e: ProtocolError) -> HTTPException:
    if isinstance(e, Rejected):
        detail = {"message": str(e), "code": e.code, "name": e.name}
        return HTTPException(status_code=400, detail=detail)
    if isinstance(e, NotReady):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidIdentity):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, SubmissionError):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, DecodeError):
        return HTTPException(status_code=500, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))

async def _run(operation, *args) -> TxResponse:
    try:
        signature = await operation(*args)
    except ProtocolError as e:
        raise _http_error(e)
    return TxResponse(signature=signature)

@app.get("/state")
async def get_state():
    return _engine().state.snapshot()

@app.get("/counter")
async def get_counter():
    eng = _engine()
    try:
        account = await eng.fetch_account()
    except ProtocolError as e:
        raise _http_error(e)
    if account is None:
        raise HTTPException(status_code=404, detail="Counter not initialized")
    return {"address": eng.address, "count": account.count, "authority": account.authority}

@app.post("/delegation/check")
async def check_delegation():
    eng = _engine()
    try:
        status = await eng.check_delegation()
    except ProtocolError as e:
        raise _http_error(e)
    return {"delegation_status": status.value, "rollup_value": eng.state.rollup_value}

# ═══════════════════════════════════════════════════════════════════
# BASE LEDGER
# ═══════════════════════════════════════════════════════════════════

@app.post("/counter/initialize", response_model=TxResponse)
async def initialize():
    return await _run(_engine().initialize)

@app.post("/counter/increment", response_model=TxResponse)
async def increment():
    return await _run(_engine().increment)

@app.post("/counter/decrement", response_model=TxResponse)
async def decrement():
    return await _run(_engine().decrement)

@app.post("/counter/set", response_model=TxResponse)
async def set_value(req: SetRequest):
    return await _run(_engine().set, req.value)

# ═══════════════════════════════════════════════════════════════════
# ROLLUP
# ═══════════════════════════════════════════════════════════════════

@app.post("/rollup/increment", response_model=TxResponse)
async def increment_on_rollup():
    return await _run(_engine().increment_on_rollup)

@app.post("/rollup/decrement", response_model=TxResponse)
async def decrement_on_rollup():
    return await _run(_engine().decrement_on_rollup)

@app.post("/rollup/set", response_model=TxResponse)
async def set_on_rollup(req: SetRequest):
    return await _run(_engine().set_on_rollup, req.value)

@app.post("/delegate", response_model=TxResponse)
async def delegate():
    return await _run(_engine().delegate)

@app.post("/commit")
async def commit():
    eng = _engine()
    resp = await _run(eng.commit)
    return {**resp.model_dump(), "commitment_signature": eng.state.last_commitment_signature}

@app.post("/undelegate", response_model=TxResponse)
async def undelegate():
    return await _run(_engine().undelegate)

@app.post("/session")
async def create_session():
    eng = _engine()
    try:
        token = await eng.create_session()
    except ProtocolError as e:
        raise _http_error(e)
    return {**token.model_dump(), "address": token.address}

@app.get("/metrics")
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    try:
        from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
        from ..observability.metrics import metrics_registry, record_status

        if engine:
            record_status(engine.state.status)

        return Response(
            content=generate_latest(metrics_registry),
            media_type=CONTENT_TYPE_LATEST
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Metrics error: {str(e)}")

def attach_engine(counter_engine: Optional[CounterEngine]):
    global engine
    engine = counter_engine

async def serve(counter_engine: CounterEngine, host: str = "127.0.0.1", port: int = 8080):
    """Serves the API inside the engine's event loop until cancelled."""
    attach_engine(counter_engine)
    config = Config(app=app, host=host, port=port, log_level="info")
    server = Server(config)
    logger.info(f"Serving counter API on http://{host}:{port}")
    try:
        await server.serve()
    finally:
        attach_engine(None)
