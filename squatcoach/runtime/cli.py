# squatcoach/runtime/cli.py
from __future__ import annotations
import logging
import sys
import threading
import time

from squatcoach.config import configure_logging, get_settings
from squatcoach.counter.session import ACTIVE_MANAGER
from squatcoach.data import db

logger = logging.getLogger(__name__)


def _printer(done: threading.Event):
    def sink(ev: dict):
        kind = ev.get("type")
        if kind == "rep":
            print(f"[{ev['outcome']:>9}] correct={ev['correct']} incorrect={ev['incorrect']}  {ev['feedback']}", flush=True)
        elif kind == "fault":
            print(f"  ! {ev['feedback']}", flush=True)
        elif kind == "session_stopped":
            done.set()
    return sink


def main():
    settings = get_settings()
    configure_logging(settings)
    db.configure(settings.db_path)

    done = threading.Event()
    mgr = ACTIVE_MANAGER()
    mgr.set_event_sink(_printer(done))
    sid, status = mgr.start(source="camera")
    print(f"Squat counter {status}, session {sid}. Press Ctrl+C to exit.", flush=True)

    try:
        while not done.is_set():
            time.sleep(0.2)
    except KeyboardInterrupt:
        print("\nExiting…", flush=True)
        mgr.stop(mgr.active_id)
    finally:
        st = mgr.status()
        print(f"Final: correct={st.correct} incorrect={st.incorrect} outcome={st.outcome or '-'}", flush=True)
        mgr.shutdown()
        db.close()
    return 0 if mgr.last_outcome != "failure" else 1


if __name__ == "__main__":
    sys.exit(main())
