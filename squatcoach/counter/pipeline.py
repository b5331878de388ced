from __future__ import annotations
import logging
import threading
import time
from typing import Any, Callable, List, Optional

import cv2
import mediapipe as mp
import numpy as np

from squatcoach.counter.pose_core import Keypoint, keypoints_from_array

logger = logging.getLogger(__name__)


class PosePipeline(threading.Thread):
    """
    Local webcam source: OpenCV capture + MediaPipe Pose, handing one list of
    normalized keypoints per frame to on_keypoints. Frames with no detected
    person are delivered as None.
    """
    def __init__(
            self,
            on_keypoints: Callable[[Optional[List[Keypoint]], Optional[int]], Any],
            camera_index: int = 0,
            show_window: bool = False,
            on_error: Optional[Callable[[str], None]] = None,
    ):
        super().__init__(daemon=True)
        self.on_keypoints = on_keypoints
        self.camera_index = camera_index
        self.show_window = show_window
        self.on_error = on_error
        self._stop_evt = threading.Event()
        self._paused = threading.Event()
        self.cap = None
        self.pose = None
        self.frame_id = 0

    def run(self):
        mp_pose = mp.solutions.pose
        mp_drawing = mp.solutions.drawing_utils

        try:
            self.cap = cv2.VideoCapture(self.camera_index)
            if not self.cap.isOpened():
                raise RuntimeError(f"Webcam {self.camera_index} not available")

            self.pose = mp_pose.Pose(
                model_complexity=1,
                smooth_landmarks=True,
                min_detection_confidence=0.5,
                min_tracking_confidence=0.5,
            )

            if self.show_window:
                try:
                    cv2.namedWindow("Squat", cv2.WINDOW_NORMAL)
                except cv2.error:
                    logger.warning("no display available, running headless")
                    self.show_window = False

            while not self._stop_evt.is_set():
                if self._paused.is_set():
                    time.sleep(0.05)
                    continue
                ok, frame = self.cap.read()
                if not ok:
                    time.sleep(0.01)
                    continue
                image = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                res = self.pose.process(image)
                self.frame_id += 1

                kps = None
                if res.pose_landmarks:
                    lms = res.pose_landmarks.landmark
                    kps = keypoints_from_array(np.array([[lm.x, lm.y, lm.visibility] for lm in lms]))
                self.on_keypoints(kps, self.frame_id)

                if self.show_window:
                    if res.pose_landmarks:
                        mp_drawing.draw_landmarks(frame, res.pose_landmarks, mp_pose.POSE_CONNECTIONS)
                    cv2.imshow("Squat", frame)
                    # macOS: imshow requires waitKey even if we ignore keys
                    _ = cv2.waitKey(1)
        except Exception as e:
            logger.exception("pose pipeline stopped")
            if self.on_error:
                self.on_error(str(e))
        finally:
            if self.cap is not None:
                self.cap.release()
            if self.pose is not None:
                self.pose.close()
            if self.show_window:
                cv2.destroyAllWindows()

    def stop(self):
        self._stop_evt.set()

    def pause(self):
        self._paused.set()

    def resume(self):
        self._paused.clear()
