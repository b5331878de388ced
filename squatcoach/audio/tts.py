from __future__ import annotations
import logging
import os
import queue
import subprocess
import threading
import time
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class TTSEngine:
    """
    Speaks coaching feedback off the frame thread. The same phrase is not
    repeated within `cooldown` seconds, so a fault held across many frames
    is said once.
    """
    def __init__(self, prefer_mac_say: bool = True, cooldown: float = 2.0):
        self.prefer_mac_say = prefer_mac_say and (os.uname().sysname == "Darwin")
        self.cooldown = cooldown
        self.q: "queue.Queue[str]" = queue.Queue()
        self._stop = threading.Event()
        self._pyttsx3 = None
        self._last_said: Dict[str, float] = {}
        self.worker = threading.Thread(target=self._run, daemon=True)
        self.worker.start()

    def _ensure_pyttsx3(self):
        if self._pyttsx3 is None:
            import pyttsx3  # lazy import
            self._pyttsx3 = pyttsx3.init()

    def _speak(self, text: str):
        if self.prefer_mac_say:
            subprocess.run(["say", text], check=False)
        else:
            self._ensure_pyttsx3()
            self._pyttsx3.say(text)
            self._pyttsx3.runAndWait()

    def _run(self):
        while not self._stop.is_set():
            try:
                text = self.q.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                if not text:
                    continue
                self._speak(text)
            except Exception:
                logger.exception("speech failed for %r", text)
            finally:
                self.q.task_done()

    def say(self, text: str, now: Optional[float] = None) -> bool:
        """Queue text unless it was said within the cooldown. Returns True if queued."""
        if not text:
            return False
        now = time.monotonic() if now is None else now
        last = self._last_said.get(text)
        if last is not None and (now - last) < self.cooldown:
            return False
        self._last_said[text] = now
        self.q.put(text)
        return True

    def shutdown(self):
        self._stop.set()
        self.q.put_nowait("")
