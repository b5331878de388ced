from __future__ import annotations
import math
import os
from typing import List

import pytest

# no speech during tests; must be set before the server module builds its manager
os.environ.setdefault("SQUAT_TRAINER_MODE", "0")

from squatcoach.counter.pose_core import (  # noqa: E402
    LEFT_ANKLE, LEFT_HIP, LEFT_KNEE, LEFT_SHOULDER,
    RIGHT_ANKLE, RIGHT_HIP, RIGHT_KNEE, RIGHT_SHOULDER,
    Keypoint,
)
from squatcoach.data import db  # noqa: E402


def make_keypoints(knee: float, hip: float = 90.0, ankle: float = 20.0) -> List[Keypoint]:
    """
    33 landmarks whose knee-vs-vertical, shoulder-hip-knee and
    knee-ankle-vs-vertical angles come out as the given degrees.
    """
    k, h, a = math.radians(knee), math.radians(hip), math.radians(ankle)
    ankle_pt = (0.5, 0.9)
    knee_pt = (ankle_pt[0] + 0.2 * math.sin(a), ankle_pt[1] - 0.2 * math.cos(a))
    hip_pt = (knee_pt[0] - 0.2 * math.sin(k), knee_pt[1] - 0.2 * math.cos(k))
    # hip -> knee direction rotated by the hip angle gives the torso
    ux, uy = math.sin(k), math.cos(k)
    dx, dy = ux * math.cos(h) - uy * math.sin(h), ux * math.sin(h) + uy * math.cos(h)
    shoulder_pt = (hip_pt[0] + 0.25 * dx, hip_pt[1] + 0.25 * dy)

    kps = [Keypoint(0.5, 0.5) for _ in range(33)]
    for idx, pt in (
        (LEFT_SHOULDER, shoulder_pt), (RIGHT_SHOULDER, shoulder_pt),
        (LEFT_HIP, hip_pt), (RIGHT_HIP, hip_pt),
        (LEFT_KNEE, knee_pt), (RIGHT_KNEE, knee_pt),
        (LEFT_ANKLE, ankle_pt), (RIGHT_ANKLE, ankle_pt),
    ):
        kps[idx] = Keypoint(*pt)
    return kps


@pytest.fixture
def kp():
    return make_keypoints


@pytest.fixture
def tmp_db(tmp_path):
    db.configure(tmp_path / "squat.db")
    yield db
    db.close()
