from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Dict

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from focal import FocusService, FrameObservation
from focal.config import FocalSettings

from .config_loader import load_raw, load_settings, persist_settings
from .logger import setup_logging
from .schemas import (
    EscalationStatusSchema,
    ObservationSchema,
    OraclePayloadSchema,
    OracleVerdictSchema,
    SettingsSchema,
    StatsSchema,
)

ROOT = Path(__file__).resolve().parent.parent
CONFIG_PATH = ROOT / "configs" / "default.yaml"

raw_cfg: Dict[str, Any] = load_raw(str(CONFIG_PATH))
logger = setup_logging(raw_cfg.get("logging", {}).get("level", "INFO"))

focal_settings: FocalSettings = load_settings(str(CONFIG_PATH))

app = FastAPI(title="focal", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

focus_service = FocusService(focal_settings)


def _schema_from_settings(settings: FocalSettings) -> SettingsSchema:
    return SettingsSchema(**settings.to_dict())


def _status() -> EscalationStatusSchema:
    return EscalationStatusSchema(**focus_service.status())


def _require_session() -> None:
    if not focus_service.engine.is_active:
        raise HTTPException(status_code=409, detail="No active session")


@app.on_event("shutdown")
async def shutdown() -> None:
    if focus_service.running:
        await focus_service.end_session()
    focus_service.close()


@app.get("/api/health")
async def health() -> Dict[str, Any]:
    return {"status": "ok", "session_active": focus_service.running}


@app.get("/api/settings", response_model=SettingsSchema)
async def get_settings() -> SettingsSchema:
    return _schema_from_settings(focal_settings)


@app.post("/api/settings", response_model=SettingsSchema)
async def update_settings(payload: SettingsSchema) -> SettingsSchema:
    global focal_settings
    api_key = focal_settings.messages.api_key
    focal_settings = FocalSettings.from_dict(payload.dict())
    focal_settings.messages.api_key = api_key
    focus_service.update_settings(focal_settings)
    persist_settings(str(CONFIG_PATH), {**payload.dict(), "logging": raw_cfg.get("logging", {"level": "INFO"})})
    return payload


@app.post("/api/session/start", response_model=EscalationStatusSchema)
async def start_session() -> EscalationStatusSchema:
    if focus_service.running:
        raise HTTPException(status_code=409, detail="Session already active")
    await focus_service.start_session()
    return _status()


@app.post("/api/session/end", response_model=StatsSchema)
async def end_session() -> StatsSchema:
    stats = await focus_service.end_session()
    if stats is None:
        raise HTTPException(status_code=409, detail="No active session")
    return StatsSchema(**stats.to_dict())


@app.post("/api/observations")
async def submit_observation(payload: ObservationSchema) -> Dict[str, Any]:
    landmarks = [lmk.dict() for lmk in payload.landmarks] if payload.landmarks else None
    focus_service.submit_observation(
        FrameObservation(
            timestamp=time.time(),
            face_detected=payload.face_detected,
            landmarks=landmarks,
            confidence=payload.confidence if payload.face_detected else 0.0,
        )
    )
    return {"status": "QUEUED"}


@app.post("/api/frames")
async def submit_frame(request: Request) -> Dict[str, Any]:
    from focal.landmarks import decode_jpeg

    body = await request.body()
    frame = decode_jpeg(body)
    if frame is None:
        raise HTTPException(status_code=400, detail="Body is not a decodable image")
    observation = await asyncio.get_running_loop().run_in_executor(None, focus_service.submit_frame, frame)
    return {"status": "QUEUED", "face_detected": observation.face_detected}


@app.post("/api/oracle", response_model=OracleVerdictSchema)
async def submit_oracle(payload: OraclePayloadSchema) -> OracleVerdictSchema:
    verdict = focus_service.submit_oracle(payload.data)
    if verdict is None:
        return OracleVerdictSchema(accepted=False)
    return OracleVerdictSchema(
        accepted=True,
        state=verdict.state.value,
        reason=verdict.reason,
        confidence=verdict.confidence,
        cause=verdict.cause.value if verdict.cause else None,
    )


@app.get("/api/escalation", response_model=EscalationStatusSchema)
async def escalation_status() -> EscalationStatusSchema:
    return _status()


@app.post("/api/escalation/dismiss", response_model=EscalationStatusSchema)
async def dismiss() -> EscalationStatusSchema:
    _require_session()
    focus_service.dismiss()
    return _status()


@app.post("/api/escalation/reset", response_model=EscalationStatusSchema)
async def reset_ladder() -> EscalationStatusSchema:
    _require_session()
    focus_service.engine.reset_ladder()
    return _status()


@app.websocket("/api/stream")
async def websocket_stream(ws: WebSocket) -> None:
    await ws.accept()
    if focus_service.loop is None:
        focus_service.loop = asyncio.get_running_loop()
    queue = focus_service.subscribe()
    try:
        while True:
            payload = await queue.get()
            await ws.send_text(payload)
    except WebSocketDisconnect:
        pass
    finally:
        focus_service.unsubscribe(queue)


if __name__ == "__main__":
    uvicorn.run("backend.main:app", host="0.0.0.0", port=8000, reload=True)
