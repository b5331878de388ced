from __future__ import annotations
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Literal, Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, ValidationError

from squatcoach.config import configure_logging, get_settings
from squatcoach.counter.session import ACTIVE_MANAGER, RepSessionManager
from squatcoach.data import db

logger = logging.getLogger(__name__)


class KeypointIn(BaseModel):
    x: float
    y: float
    visibility: float = 1.0


class KeypointFrame(BaseModel):
    type: Literal["keypoints"] = "keypoints"
    frame_id: Optional[int] = Field(None, description="Monotonic per client; older frames are dropped")
    session_id: Optional[str] = Field(None, description="Session the frame was captured for")
    keypoints: Optional[List[KeypointIn]] = Field(None, description="33 MediaPipe landmarks, or null if no pose")


_LOOP: Optional[asyncio.AbstractEventLoop] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _LOOP
    _LOOP = asyncio.get_running_loop()
    settings = get_settings()
    configure_logging(settings)
    db.configure(settings.db_path)
    yield
    ACTIVE_MANAGER().shutdown()
    db.close()
    _LOOP = None


app = FastAPI(lifespan=lifespan)

MANAGER = ACTIVE_MANAGER()

WS_CLIENTS: Set[WebSocket] = set()

async def broadcast(obj: dict):
    dead = []
    for ws in list(WS_CLIENTS):
        try:
            await ws.send_json(obj)
        except Exception:
            dead.append(ws)
    for d in dead:
        WS_CLIENTS.discard(d)

# let the manager emit events to all WS clients, from the loop or from the camera/timer threads
def _sink(ev: dict):
    try:
        asyncio.get_running_loop().create_task(broadcast(ev))
    except RuntimeError:
        if _LOOP is not None and not _LOOP.is_closed():
            asyncio.run_coroutine_threadsafe(broadcast(ev), _LOOP)
        else:
            logger.debug("event dropped, no loop: %s", ev.get("type"))

MANAGER.set_event_sink(_sink)


@app.get("/favicon.ico")
async def favicon():
    return Response(status_code=204)

@app.get("/sessions/current")
async def current():
    m: RepSessionManager = ACTIVE_MANAGER()
    st = m.status()
    return JSONResponse({
        "state": st.state,
        "session_id": st.session_id or None,
        "correct": st.correct,
        "incorrect": st.incorrect,
        "feedback": st.feedback,
        "pulse": st.pulse,
        "outcome": st.outcome,
        "web_mode": m.web_mode,
    })

@app.get("/sessions/{session_id}/reps")
async def session_reps(session_id: str):
    row = db.get_session(session_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"unknown session {session_id}")
    return {"session": row, "reps": db.list_reps(session_id)}

@app.post("/counter/start")
async def start(target_reps: int | None = None, source: Literal["web", "camera"] = "web"):
    m = ACTIVE_MANAGER()
    sid, status = m.start(target_reps=target_reps, source=source)
    return {"session_id": sid, "status": status}

@app.post("/counter/pause")
async def pause():
    return {"session_id": ACTIVE_MANAGER().pause() or None}

@app.post("/counter/resume")
async def resume():
    return {"session_id": ACTIVE_MANAGER().resume() or None}

@app.post("/counter/stop")
async def stop():
    m = ACTIVE_MANAGER()
    final = m.stop(m.active_id)
    return {
        "stopped": True,
        "session_id": final.session_id or None,
        "correct": final.correct,
        "incorrect": final.incorrect,
        "outcome": final.outcome,
    }

@app.websocket("/ws/keypoints")
async def ws_keypoints(ws: WebSocket):
    await ws.accept()
    WS_CLIENTS.add(ws)
    m = ACTIVE_MANAGER()
    m.set_web_mode(True)
    await broadcast({"type": "trace", "msg": "ws: client connected"})
    try:
        while True:
            raw = await ws.receive_text()
            try:
                frame = KeypointFrame.model_validate_json(raw)
            except ValidationError as e:
                await ws.send_json({"type": "error", "msg": f"invalid frame: {e.error_count()} error(s)"})
                continue
            kps = [k.model_dump() for k in frame.keypoints] if frame.keypoints is not None else None
            res = m.push_keypoints(kps, frame.frame_id, frame.session_id)
            if res is None:
                continue
            await ws.send_json({
                "type": "frame",
                "frame_id": frame.frame_id,
                "correct": res.correct,
                "incorrect": res.incorrect,
                "feedback": res.feedback,
                "fault_raised": res.fault_raised,
                "state": res.state.value if res.state else None,
                "knee_deg": round(res.angles.knee, 1),
                "pulse": m.pulse.active,
            })
    except WebSocketDisconnect:
        pass
    finally:
        WS_CLIENTS.discard(ws)
        if not WS_CLIENTS:
            m.set_web_mode(False)
        await broadcast({"type": "trace", "msg": "ws closed"})


def main():
    import uvicorn

    uvicorn.run("squatcoach.runtime.server:app", host="127.0.0.1", port=8000)
