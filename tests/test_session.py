import sys
import types

import pytest

from squatcoach.counter.session import FinalSummary, RepSessionManager, SessionPolicy

STAND, HALF, DEEP = 10.0, 60.0, 110.0
GOOD_REP = (HALF, DEEP, HALF, STAND)


@pytest.fixture
def events():
    return []


@pytest.fixture
def manager(tmp_db, events):
    m = RepSessionManager(trainer_mode=False, pulse_seconds=30.0)
    m.set_event_sink(events.append)
    m.set_web_mode(True)
    yield m
    m.shutdown()


@pytest.fixture
def feed(manager, kp):
    def _feed(*frames, **kw):
        out = None
        for f in frames:
            if not isinstance(f, tuple):
                f = (f,)
            out = manager.push_keypoints(kp(*f), **kw)
        return out
    return _feed


def test_policy():
    p = SessionPolicy()
    assert p.evaluate(10, 0) is None
    assert p.evaluate(11, 0) == "success"
    assert p.evaluate(5, 44) is None
    assert p.evaluate(5, 45) == "failure"
    assert p.evaluate(11, 39) == "success"


def test_start_uses_web_pipeline_in_web_mode(manager, events, tmp_db):
    sid, status = manager.start(target_reps=5)
    assert status == "started (web)"
    assert manager.status().state == "running"
    assert events[-1]["type"] == "session_started"
    assert tmp_db.get_session(sid)["target_reps"] == 5


def test_frames_without_session_are_dropped(manager, feed):
    assert feed(HALF) is None


def test_correct_rep_flow(manager, feed, events, tmp_db):
    sid, _ = manager.start()
    res = feed(*GOOD_REP)
    assert res.outcome == "correct"
    st = manager.status()
    assert (st.correct, st.incorrect) == (1, 0)
    assert st.feedback == "Perfect squat!"
    assert st.pulse is True
    reps = [e for e in events if e["type"] == "rep"]
    assert len(reps) == 1 and reps[0]["outcome"] == "correct"
    assert {"type": "pulse", "session_id": sid, "active": True} in events
    rows = tmp_db.list_reps(sid)
    assert [(r["rep_index"], r["outcome"], r["fault"]) for r in rows] == [(1, "correct", None)]


def test_fault_is_reported_once_and_stored(manager, feed, events, tmp_db):
    sid, _ = manager.start()
    feed(HALF, (HALF, 150.0), (HALF, 150.0), DEEP, HALF, STAND)
    faults = [e for e in events if e["type"] == "fault"]
    assert len(faults) == 1
    assert faults[0]["fault"] == "back_angle"
    assert manager.status().incorrect == 1
    assert tmp_db.list_reps(sid)[0]["fault"] == "back_angle"
    assert tmp_db.get_session(sid)["incorrect"] == 1


def test_stale_and_foreign_frames_are_dropped(manager, kp):
    sid, _ = manager.start()
    assert manager.push_keypoints(kp(HALF), frame_id=5) is not None
    assert manager.push_keypoints(kp(STAND), frame_id=4) is None
    assert manager.push_keypoints(kp(STAND), frame_id=6, session_id="other") is None
    assert manager.status().incorrect == 0
    res = manager.push_keypoints(kp(STAND), frame_id=6, session_id=sid)
    assert res.incorrect == 1


def test_pause_drops_frames(manager, feed):
    manager.start()
    manager.pause()
    assert manager.status().state == "paused"
    assert feed(HALF, STAND) is None
    manager.resume()
    assert feed(HALF, STAND).incorrect == 1


def test_stop_summarizes_and_cancels_pulse(manager, feed, tmp_db):
    sid, _ = manager.start()
    feed(*GOOD_REP)
    feed(HALF, STAND)
    assert manager.pulse.pending
    final = manager.stop(sid)
    assert final == FinalSummary(session_id=sid, correct=1, incorrect=1, outcome=None)
    assert final.total_reps == 2
    assert not manager.pulse.pending
    assert manager.status().state == "stopped"
    assert feed(HALF) is None
    row = tmp_db.get_session(sid)
    assert row["stopped_at"] is not None
    assert (row["correct"], row["incorrect"]) == (1, 1)


def test_policy_success_stops_session(tmp_db, kp):
    events = []
    m = RepSessionManager(trainer_mode=False, policy=SessionPolicy(success_reps=1, max_attempts=50))
    m.set_event_sink(events.append)
    m.set_web_mode(True)
    sid, _ = m.start()
    for _ in range(2):
        for knee in GOOD_REP:
            m.push_keypoints(kp(knee))
    assert m.active_id is None
    assert m.last_outcome == "success"
    assert {"type": "outcome", "session_id": sid, "outcome": "success"} in events
    assert tmp_db.get_session(sid)["outcome"] == "success"
    m.shutdown()


def test_policy_failure_stops_session(tmp_db, kp):
    m = RepSessionManager(trainer_mode=False, policy=SessionPolicy(success_reps=10, max_attempts=2))
    m.set_web_mode(True)
    sid, _ = m.start()
    for knee in (HALF, STAND, HALF, DEEP, HALF, STAND):
        m.push_keypoints(kp(knee))
    st = m.status()
    assert st.state == "stopped"
    assert (st.correct, st.incorrect, st.outcome) == (1, 1, "failure")
    m.shutdown()


def test_restart_resets_counts(manager, feed):
    first, _ = manager.start()
    feed(*GOOD_REP)
    second, _ = manager.start()
    assert second != first
    assert (manager.status().correct, manager.status().incorrect) == (0, 0)


def test_broken_sink_does_not_break_frames(manager, feed):
    def sink(_):
        raise RuntimeError("socket closed")

    manager.set_event_sink(sink)
    manager.start()
    assert feed(*GOOD_REP).correct == 1


class FakeCamera:
    """Stands in for the webcam thread; tests drive its callbacks by hand."""
    instances = []

    def __init__(self, on_keypoints, camera_index=0, show_window=False, on_error=None):
        self.on_keypoints = on_keypoints
        self.on_error = on_error
        self.camera_index = camera_index
        self.started = self.stopped = self.paused = False
        FakeCamera.instances.append(self)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False


@pytest.fixture
def cameras(monkeypatch):
    FakeCamera.instances = []
    fake = types.ModuleType("squatcoach.counter.pipeline")
    fake.PosePipeline = FakeCamera
    monkeypatch.setitem(sys.modules, "squatcoach.counter.pipeline", fake)
    return FakeCamera.instances


@pytest.fixture
def cam_manager(tmp_db, events, cameras):
    m = RepSessionManager(trainer_mode=False, pulse_seconds=30.0, camera_index=2)
    m.set_event_sink(events.append)
    yield m
    m.shutdown()


def test_camera_frames_are_counted(cam_manager, cameras, kp):
    sid, status = cam_manager.start()
    assert status == "started (camera)"
    cam = cameras[-1]
    assert cam.started and cam.camera_index == 2
    for i, knee in enumerate(GOOD_REP, 1):
        res = cam.on_keypoints(kp(knee), i)
    assert res.outcome == "correct"
    assert cam_manager.status().correct == 1


def test_replaced_camera_frames_do_not_reach_new_session(cam_manager, cameras, kp):
    first, _ = cam_manager.start()
    second, _ = cam_manager.start()
    old, new = cameras
    assert old.stopped and not new.stopped
    # late frames from the first camera thread, then the new one standing still
    assert old.on_keypoints(kp(HALF), 1) is None
    assert new.on_keypoints(kp(STAND), 1) is not None
    st = cam_manager.status()
    assert st.session_id == second
    assert (st.correct, st.incorrect) == (0, 0)


def test_late_error_from_replaced_camera_is_ignored(cam_manager, cameras, events):
    cam_manager.start()
    second, _ = cam_manager.start()
    old, new = cameras
    old.on_error("Webcam 2 not available")
    assert cam_manager.active_id == second
    assert cam_manager.status().state == "running"
    assert not new.stopped

    new.on_error("Webcam 2 not available")
    assert cam_manager.active_id is None
    assert new.stopped
    assert {"type": "trace", "msg": "pipeline error: Webcam 2 not available"} in events


def test_pause_and_resume_ignore_other_sessions(cam_manager, cameras):
    sid, _ = cam_manager.start()
    cam = cameras[-1]
    assert cam_manager.pause("not-this-one") == sid
    assert not cam.paused
    assert cam_manager.status().state == "running"
    assert cam_manager.pause(sid) == sid
    assert cam.paused
    assert cam_manager.resume("not-this-one") == sid
    assert cam_manager.status().state == "paused"
    cam_manager.resume(sid)
    assert not cam.paused and cam_manager.status().state == "running"
