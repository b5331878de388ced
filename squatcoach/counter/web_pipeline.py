# squatcoach/counter/web_pipeline.py
from __future__ import annotations
from typing import Any, Callable, Iterable, List, Optional

from squatcoach.counter.pose_core import Keypoint, MissingLandmarks, keypoints_from_payload

class WebKeypointPipeline:
    """
    A minimal 'pipeline' that consumes keypoints estimated in the browser.
    No camera, no threads. Just call push(keypoints, frame_id).

    Frames whose frame_id is not newer than the last accepted one are
    dropped; the browser can deliver a late result after a newer one.
    """
    def __init__(
        self,
        on_keypoints: Callable[[Optional[List[Keypoint]], Optional[int]], Any],
        debug_cb: Optional[Callable[[dict], None]] = None,
    ):
        self.on_keypoints = on_keypoints
        self.debug_cb = debug_cb
        self._running = True
        self.last_frame_id: Optional[int] = None

    # keep for API parity with PosePipeline
    def start(self):
        self._running = True

    def stop(self):
        self._running = False

    def pause(self):
        self._running = False

    def resume(self):
        self._running = True

    def is_latest(self, frame_id: Optional[int]) -> bool:
        if frame_id is None or self.last_frame_id is None:
            return True
        return frame_id > self.last_frame_id

    def push(self, keypoints: Optional[Iterable[Any]], frame_id: Optional[int] = None):
        """Feed one frame of browser keypoints (or None when no pose was found)."""
        if not self._running:
            return None
        if not self.is_latest(frame_id):
            if self.debug_cb:
                self.debug_cb({"type": "trace", "msg": f"stale frame {frame_id} dropped"})
            return None
        if frame_id is not None:
            self.last_frame_id = frame_id
        try:
            kps = keypoints_from_payload(keypoints)
        except MissingLandmarks as e:
            if self.debug_cb:
                self.debug_cb({"type": "trace", "msg": f"bad frame: {e}"})
            kps = None
        return self.on_keypoints(kps, frame_id)
