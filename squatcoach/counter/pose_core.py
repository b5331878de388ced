from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np

# MediaPipe Pose landmark indices
NOSE = 0
LEFT_SHOULDER, RIGHT_SHOULDER = 11, 12
LEFT_HIP, RIGHT_HIP = 23, 24
LEFT_KNEE, RIGHT_KNEE = 25, 26
LEFT_ANKLE, RIGHT_ANKLE = 27, 28

REQUIRED_LANDMARKS = (
    NOSE,
    LEFT_SHOULDER, RIGHT_SHOULDER,
    LEFT_HIP, RIGHT_HIP,
    LEFT_KNEE, RIGHT_KNEE,
    LEFT_ANKLE, RIGHT_ANKLE,
)


class MissingLandmarks(ValueError):
    """Keypoints absent or too short for the squat landmarks."""


@dataclass(frozen=True)
class Keypoint:
    x: float
    y: float
    visibility: float = 1.0


@dataclass(frozen=True)
class JointAngles:
    knee: float   # averaged left/right, against vertical
    hip: float    # left shoulder-hip-knee
    ankle: float  # left knee-ankle, against vertical


Point = Tuple[float, float]

# Utility math

def angle_3pt(a: Point, b: Point, c: Point) -> float:
    """Return angle ABC in degrees with B as vertex, folded into [0, 180]."""
    ang = math.degrees(
        math.atan2(c[1] - b[1], c[0] - b[0]) - math.atan2(a[1] - b[1], a[0] - b[0])
    )
    ang = abs(ang)
    if ang > 180:
        ang = 360 - ang
    return ang


def _xy(kp: Keypoint) -> Point:
    return (kp.x, kp.y)


def vertical_ref(kp: Keypoint) -> Point:
    # straight above the joint, on the top edge of the frame
    return (kp.x, 0.0)


def _require(keypoints: Optional[Sequence[Keypoint]]) -> Sequence[Keypoint]:
    if not keypoints:
        raise MissingLandmarks("no keypoints in frame")
    needed = max(REQUIRED_LANDMARKS) + 1
    if len(keypoints) < needed:
        raise MissingLandmarks(f"expected at least {needed} keypoints, got {len(keypoints)}")
    return keypoints


def knee_angle(keypoints: Sequence[Keypoint]) -> float:
    kps = _require(keypoints)
    left = angle_3pt(_xy(kps[LEFT_HIP]), _xy(kps[LEFT_KNEE]), vertical_ref(kps[LEFT_KNEE]))
    right = angle_3pt(_xy(kps[RIGHT_HIP]), _xy(kps[RIGHT_KNEE]), vertical_ref(kps[RIGHT_KNEE]))
    return (left + right) / 2.0


def hip_angle(keypoints: Sequence[Keypoint]) -> float:
    kps = _require(keypoints)
    return angle_3pt(_xy(kps[LEFT_SHOULDER]), _xy(kps[LEFT_HIP]), _xy(kps[LEFT_KNEE]))


def ankle_angle(keypoints: Sequence[Keypoint]) -> float:
    kps = _require(keypoints)
    return angle_3pt(_xy(kps[LEFT_KNEE]), _xy(kps[LEFT_ANKLE]), vertical_ref(kps[LEFT_ANKLE]))


def joint_angles(keypoints: Optional[Sequence[Keypoint]]) -> JointAngles:
    """All three squat angles for one frame. Raises MissingLandmarks."""
    kps = _require(keypoints)
    return JointAngles(knee=knee_angle(kps), hip=hip_angle(kps), ankle=ankle_angle(kps))


def _to_keypoint(item: Any) -> Keypoint:
    if isinstance(item, Keypoint):
        return item
    if isinstance(item, dict):
        return Keypoint(float(item["x"]), float(item["y"]), float(item.get("visibility", 1.0)))
    if hasattr(item, "x") and hasattr(item, "y"):
        # mediapipe NormalizedLandmark or similar
        return Keypoint(float(item.x), float(item.y), float(getattr(item, "visibility", 1.0)))
    x, y, *rest = item
    return Keypoint(float(x), float(y), float(rest[0]) if rest else 1.0)


def keypoints_from_payload(items: Optional[Iterable[Any]]) -> Optional[List[Keypoint]]:
    """
    Normalize whatever the pose collaborator hands us (dicts from the browser,
    mediapipe landmarks, (x, y[, vis]) tuples) into Keypoints.
    """
    if items is None:
        return None
    try:
        return [_to_keypoint(it) for it in items]
    except (KeyError, TypeError, ValueError) as e:
        raise MissingLandmarks(f"malformed keypoint: {e}") from e


def keypoints_from_array(arr: Optional[np.ndarray]) -> Optional[List[Keypoint]]:
    """(N, 2) or (N, 3+) array of x, y[, visibility] -> Keypoints."""
    if arr is None:
        return None
    a = np.asarray(arr, dtype=np.float64)
    if a.ndim != 2 or a.shape[1] < 2:
        raise MissingLandmarks(f"expected an (N, 2+) array, got shape {a.shape}")
    vis = a[:, 2] if a.shape[1] > 2 else np.ones(a.shape[0])
    return [Keypoint(float(x), float(y), float(v)) for x, y, v in zip(a[:, 0], a[:, 1], vis)]
