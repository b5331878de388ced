from __future__ import annotations
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Literal, Optional, Tuple

from squatcoach.audio.tts import TTSEngine
from squatcoach.common.events import EventType, FaultEvent, RepEvent, SessionEvent
from squatcoach.counter.pose_core import Keypoint
from squatcoach.counter.pulse import SuccessPulse
from squatcoach.counter.tracker import (
    DEFAULT_THRESHOLDS,
    AngleThresholds,
    Fault,
    FrameResult,
    RepStateTracker,
    RepTracker,
)
from squatcoach.counter.web_pipeline import WebKeypointPipeline
from squatcoach.data import db

logger = logging.getLogger(__name__)

Source = Literal["web", "camera"]
Outcome = Literal["success", "failure"]


@dataclass(frozen=True)
class SessionPolicy:
    success_reps: int = 10   # success once correct reps go past this
    max_attempts: int = 50   # failure once correct + incorrect reach this

    def evaluate(self, correct: int, incorrect: int) -> Optional[Outcome]:
        if correct > self.success_reps:
            return "success"
        if correct + incorrect >= self.max_attempts:
            return "failure"
        return None


OUTCOME_SPEECH = {
    "success": "Your mission success!",
    "failure": "Your mission failed!",
}


@dataclass
class SessionStatus:
    session_id: str
    state: str
    correct: int
    incorrect: int
    feedback: str
    pulse: bool
    outcome: Optional[str] = None


@dataclass
class FinalSummary:
    session_id: str
    correct: int
    incorrect: int
    outcome: Optional[str] = None

    @property
    def total_reps(self) -> int:
        return self.correct + self.incorrect


class RepSessionManager:
    def __init__(
        self,
        trainer_mode: bool = True,
        thresholds: AngleThresholds = DEFAULT_THRESHOLDS,
        policy: Optional[SessionPolicy] = None,
        pulse_seconds: float = 1.5,
        camera_index: int = 0,
        show_window: bool = False,
        tts: Optional[TTSEngine] = None,
    ):
        self.trainer_mode = trainer_mode
        self.tts = tts if tts is not None else (TTSEngine() if trainer_mode else None)
        self.policy = policy or SessionPolicy()
        self.camera_index = camera_index
        self.show_window = show_window
        self.logic = RepStateTracker(thresholds, debug_cb=self._emit_debug)
        self.pulse = SuccessPulse(pulse_seconds, on_change=self._on_pulse)

        self.active_id: Optional[str] = None
        self.active_pipeline: Any = None
        self.tracker: Optional[RepTracker] = None
        self.paused = False
        self.last_outcome: Optional[str] = None
        self.web_mode: bool = False           # browser is feeding keypoints?
        self._last_fault: Optional[Fault] = None
        self._lock = threading.RLock()        # camera thread vs. API calls
        self._event_sink: Optional[Callable[[dict], None]] = None

    def set_event_sink(self, sink: Optional[Callable[[dict], None]]):
        self._event_sink = sink

    def set_web_mode(self, active: bool):
        self.web_mode = bool(active)

    # ---- events -------------------------------------------------------

    def _emit(self, payload: dict):
        if self._event_sink is None:
            return
        try:
            self._event_sink(payload)
        except Exception:
            logger.exception("event sink failed for %s", payload.get("type"))

    def _emit_debug(self, ev):
        """Normalize a trace message and forward it to the sink."""
        if isinstance(ev, dict):
            self._emit(ev)
        else:
            self._emit({"type": EventType.TRACE.value, "msg": str(ev)})

    def _say(self, text: str):
        # the browser speaks for itself in web mode
        if self.tts is None or not self.trainer_mode or self.web_mode:
            return
        try:
            self.tts.say(text)
        except Exception:
            logger.exception("tts failed")

    def _on_pulse(self, active: bool):
        self._emit({"type": EventType.PULSE.value, "session_id": self.active_id, "active": active})

    # ---- lifecycle ----------------------------------------------------

    def start(self, target_reps: Optional[int] = None, source: Optional[Source] = None) -> Tuple[str, str]:
        # stop existing session if any; its camera thread is joined outside the lock
        if self.active_id is not None:
            self._say("stopping current session")
            self.stop(self.active_id)

        with self._lock:
            sid = str(uuid.uuid4())
            self.active_id = sid
            self.tracker = RepTracker()
            self.paused = False
            self.last_outcome = None
            self._last_fault = None
            now = time.time()
            db.insert_session(sid, now, target_reps)

            # pipelines report back tagged with the session they were started for
            def on_keypoints(kps, frame_id=None):
                return self._on_keypoints(kps, frame_id, sid)

            def on_error(msg):
                self._on_error(msg, sid)

            source = source or ("web" if self.web_mode else "camera")
            if source == "web":
                pipe = WebKeypointPipeline(on_keypoints, debug_cb=self._emit_debug)
            else:
                from squatcoach.counter.pipeline import PosePipeline
                pipe = PosePipeline(
                    on_keypoints,
                    camera_index=self.camera_index,
                    show_window=self.show_window,
                    on_error=on_error,
                )
            self.active_pipeline = pipe
            pipe.start()

        logger.info("session %s started (%s)", sid, source)
        self._say("starting squat counter")
        self._emit(SessionEvent(EventType.SESSION_STARTED, sid, now).to_dict())
        return sid, f"started ({source})"

    def _is_current(self, session_id: Optional[str]) -> bool:
        return self.active_pipeline is not None and session_id in (None, self.active_id)

    def pause(self, session_id: Optional[str] = None) -> str:
        with self._lock:
            if not self._is_current(session_id):
                return self.active_id or ""
            self.active_pipeline.pause()
            self.paused = True
            sid = self.active_id
            counts = self._counts()
        self._say("paused")
        self._emit(SessionEvent(EventType.SESSION_PAUSED, sid, time.time(), *counts).to_dict())
        return sid

    def resume(self, session_id: Optional[str] = None) -> str:
        with self._lock:
            if not self._is_current(session_id):
                return self.active_id or ""
            self.active_pipeline.resume()
            self.paused = False
            sid = self.active_id
            counts = self._counts()
        self._say("resuming")
        self._emit(SessionEvent(EventType.SESSION_RESUMED, sid, time.time(), *counts).to_dict())
        return sid

    def stop(self, session_id: Optional[str] = None, outcome: Optional[Outcome] = None) -> FinalSummary:
        with self._lock:
            sid = self.active_id or ""
            correct, incorrect = self._counts()
            pipe = self.active_pipeline
            self.pulse.cancel()
            self.active_pipeline = None
            self.active_id = None
            self.paused = False
            if outcome is not None:
                self.last_outcome = outcome

        if pipe is not None:
            pipe.stop()
            # the camera thread may be the one stopping us (policy outcome)
            if isinstance(pipe, threading.Thread) and pipe is not threading.current_thread():
                pipe.join(timeout=1.0)

        if sid:
            db.stop_session(sid, time.time(), correct, incorrect, outcome)
            logger.info("session %s stopped: %d correct, %d incorrect, outcome=%s",
                        sid, correct, incorrect, outcome)
            self._say(OUTCOME_SPEECH.get(outcome, "stopping counter"))
            self._emit(SessionEvent(EventType.SESSION_STOPPED, sid, time.time(),
                                    correct, incorrect, outcome).to_dict())
        return FinalSummary(session_id=sid, correct=correct, incorrect=incorrect, outcome=outcome)

    def shutdown(self):
        if self.active_id is not None:
            self.stop(self.active_id)
        self.pulse.cancel()
        if self.tts is not None:
            self.tts.shutdown()

    def status(self, session_id: Optional[str] = None) -> SessionStatus:
        correct, incorrect = self._counts()
        if self.active_pipeline is None:
            state = "stopped"
        else:
            state = "paused" if self.paused else "running"
        return SessionStatus(
            session_id=self.active_id or "",
            state=state,
            correct=correct,
            incorrect=incorrect,
            feedback=self.tracker.feedback if self.tracker else "",
            pulse=self.pulse.active,
            outcome=self.last_outcome,
        )

    def _counts(self) -> Tuple[int, int]:
        if self.tracker is None:
            return 0, 0
        return self.tracker.correct, self.tracker.incorrect

    def _on_error(self, msg: str, session_id: Optional[str] = None):
        # Called from pipeline thread on error
        with self._lock:
            if self.active_id is None or session_id not in (None, self.active_id):
                logger.info("pipeline error from inactive session %s ignored: %s", session_id, msg)
                return
            sid = self.active_id
        self._say("camera error")
        self._emit({"type": EventType.TRACE.value, "msg": f"pipeline error: {msg}"})
        self.stop(sid)

    # ---- frames -------------------------------------------------------

    def push_keypoints(
        self,
        keypoints: Optional[Iterable[Any]],
        frame_id: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> Optional[FrameResult]:
        """Feed one browser frame. Frames for a session that is gone are dropped."""
        pipe = self.active_pipeline
        if not isinstance(pipe, WebKeypointPipeline):
            return None
        if session_id is not None and session_id != self.active_id:
            self._emit_debug(f"frame for inactive session {session_id} dropped")
            return None
        return pipe.push(keypoints, frame_id)

    def _on_keypoints(
        self,
        keypoints: Optional[List[Keypoint]],
        frame_id: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> Optional[FrameResult]:
        with self._lock:
            if self.tracker is None or self.active_id is None:
                return None
            if session_id is not None and session_id != self.active_id:
                # a pipeline from a session that was already replaced
                return None
            sid = self.active_id
            res = self.logic.on_frame(self.tracker, keypoints)
            if res is None:
                return None

            now = time.time()
            if res.fault is not None and res.fault != self._last_fault:
                self._on_fault(sid, now, res)
                self._last_fault = res.fault

            if res.outcome is not None:
                self._on_rep(sid, now, res)
                outcome = self.policy.evaluate(res.correct, res.incorrect)
                if outcome is not None:
                    self._emit({"type": EventType.OUTCOME.value, "session_id": sid, "outcome": outcome})
                    self.stop(sid, outcome=outcome)
            return res

    def _on_fault(self, sid: str, ts: float, res: FrameResult):
        logger.debug("fault %s (hip=%.1f ankle=%.1f knee=%.1f)", res.fault.value,
                     res.angles.hip, res.angles.ankle, res.angles.knee)
        self._say(res.feedback)
        self._emit(FaultEvent(EventType.FAULT, sid, ts, res.fault.value, res.feedback).to_dict())

    def _on_rep(self, sid: str, ts: float, res: FrameResult):
        fault = self._last_fault.value if self._last_fault and res.outcome == "incorrect" else None
        self._last_fault = None
        db.insert_rep(
            session_id=sid,
            rep_index=res.correct + res.incorrect,
            t=ts,
            outcome=res.outcome,
            fault=fault,
            knee_deg=res.angles.knee,
            hip_deg=res.angles.hip,
            ankle_deg=res.angles.ankle,
        )
        if res.outcome == "correct":
            self.pulse.trigger()
        self._say(res.feedback)
        self._emit(RepEvent(EventType.REP, sid, ts, res.outcome, res.correct, res.incorrect,
                            res.feedback, res.angles.knee).to_dict())


# Global manager factory (so the server and CLI share a singleton cleanly)
_ACTIVE: Optional[RepSessionManager] = None

def ACTIVE_MANAGER() -> RepSessionManager:
    global _ACTIVE
    if _ACTIVE is None:
        from squatcoach.config import get_settings
        s = get_settings()
        _ACTIVE = RepSessionManager(
            trainer_mode=s.trainer_mode,
            policy=SessionPolicy(success_reps=s.success_reps, max_attempts=s.max_attempts),
            pulse_seconds=s.pulse_seconds,
            camera_index=s.camera_index,
            show_window=s.show_window,
        )
    return _ACTIVE
