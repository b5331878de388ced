from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from squatcoach.counter.pose_core import JointAngles, Keypoint, MissingLandmarks, joint_angles

logger = logging.getLogger(__name__)

Band = Tuple[float, float]

PERFECT_FEEDBACK = "Perfect squat!"
INCORRECT_FEEDBACK = "Incorrect form! Check your posture."


class PostureState(str, Enum):
    S1 = "s1"   # standing
    S2 = "s2"   # transition
    S3 = "s3"   # full squat


class Fault(str, Enum):
    BACK_ANGLE = "back_angle"
    KNEE_OVER_TOE = "knee_over_toe"
    TOO_DEEP = "too_deep"

    @property
    def feedback(self) -> str:
        return _FAULT_FEEDBACK[self]


_FAULT_FEEDBACK = {
    Fault.BACK_ANGLE: "Keep your back straight!",
    Fault.KNEE_OVER_TOE: "Knees going too far over toes!",
    Fault.TOO_DEEP: "Squat too deep!",
}


@dataclass(frozen=True)
class AngleThresholds:
    # Knee-vs-vertical bands, checked in this order (closed intervals)
    normal: Band = (0.0, 45.0)
    trans: Band = (45.0, 90.0)
    pass_: Band = (90.0, 135.0)
    # Form limits
    hip: Band = (60.0, 120.0)                      # fault above hip[1]
    knee: Tuple[float, float, float] = (50.0, 100.0, 130.0)  # too deep above knee[2]
    ankle: float = 80.0                            # knee over toe above this
    offset: float = 30.0                           # camera offset; not evaluated yet

    def __post_init__(self):
        for name in ("normal", "trans", "pass_", "hip"):
            lo, hi = getattr(self, name)
            if lo > hi:
                raise ValueError(f"{name} band is inverted: ({lo}, {hi})")
        if not (self.normal[0] <= self.trans[0] <= self.pass_[0]):
            raise ValueError("posture bands must be declared in ascending order")


DEFAULT_THRESHOLDS = AngleThresholds()


@dataclass
class RepTracker:
    """
    Mutable per-session state, owned by the caller and handed to every
    RepStateTracker.on_frame call. reset() marks a rep boundary: it clears
    the attempt (sequence + fault flag) and keeps the running counters.
    """
    state_seq: List[PostureState] = field(default_factory=list)
    incorrect_posture: bool = False
    prev_state: Optional[PostureState] = None
    correct: int = 0
    incorrect: int = 0
    feedback: str = ""

    def reset(self):
        self.state_seq = []
        self.incorrect_posture = False

    @property
    def attempts(self) -> int:
        return self.correct + self.incorrect


@dataclass
class FrameResult:
    correct: int
    incorrect: int
    feedback: str
    fault_raised: bool
    state: Optional[PostureState]
    angles: JointAngles
    outcome: Optional[str] = None   # "correct" | "incorrect" when a rep closed on this frame
    fault: Optional[Fault] = None   # fault that fired on this frame


class RepStateTracker:
    """
    Squat rep classifier over three joint angles.

    Knee angle against vertical is bucketed into s1/s2/s3. A rep is the path
    s1 -> s2 -> s3 -> s2 -> s1; returning to s1 closes the attempt and scores
    it. Form faults seen while out of s1 mark the attempt incorrect.
    """
    def __init__(self, thresholds: AngleThresholds = DEFAULT_THRESHOLDS,
                 debug_cb: Optional[Callable[[str], None]] = None):
        self.th = thresholds
        self._dbg = debug_cb or (lambda *_: None)

    def classify(self, knee_angle: float) -> Optional[PostureState]:
        # first band wins, so 45 -> s1 and 90 -> s2
        for state, (lo, hi) in (
            (PostureState.S1, self.th.normal),
            (PostureState.S2, self.th.trans),
            (PostureState.S3, self.th.pass_),
        ):
            if lo <= knee_angle <= hi:
                return state
        return None

    def record_transition(self, tracker: RepTracker, state: Optional[PostureState]) -> bool:
        """Append state to the attempt if the ordering rules allow it."""
        seq = tracker.state_seq
        n_s2 = seq.count(PostureState.S2)
        has_s3 = PostureState.S3 in seq

        if state == PostureState.S2:
            if (not has_s3 and n_s2 == 0) or (has_s3 and n_s2 == 1):
                seq.append(state)
                return True
        elif state == PostureState.S3:
            if not has_s3 and n_s2 > 0:
                seq.append(state)
                return True
        return False

    def check_form(self, tracker: RepTracker, angles: JointAngles) -> Optional[Fault]:
        """First failing check wins: back, then knee over toe, then depth."""
        fault = None
        if angles.hip > self.th.hip[1]:
            fault = Fault.BACK_ANGLE
        elif angles.ankle > self.th.ankle:
            fault = Fault.KNEE_OVER_TOE
        elif angles.knee > self.th.knee[2]:
            fault = Fault.TOO_DEEP

        if fault is not None:
            tracker.incorrect_posture = True
            tracker.feedback = fault.feedback
        return fault

    def _close_rep(self, tracker: RepTracker) -> Optional[str]:
        seq = tracker.state_seq
        outcome = None
        if len(seq) == 3 and not tracker.incorrect_posture:
            tracker.correct += 1
            tracker.feedback = PERFECT_FEEDBACK
            outcome = "correct"
        elif tracker.incorrect_posture or seq == [PostureState.S2]:
            tracker.incorrect += 1
            tracker.feedback = INCORRECT_FEEDBACK
            outcome = "incorrect"
        # empty sequence: idle standing, nothing to score
        if outcome:
            self._dbg(f"rep {outcome} seq={[s.value for s in seq]} → "
                      f"{tracker.correct}/{tracker.incorrect}")
        tracker.reset()
        return outcome

    def on_frame(self, tracker: RepTracker,
                 keypoints: Optional[Sequence[Keypoint]]) -> Optional[FrameResult]:
        """
        Advance tracker by one frame. Returns None (and leaves tracker
        untouched) when the frame has no usable landmarks.
        """
        try:
            angles = joint_angles(keypoints)
        except MissingLandmarks as e:
            logger.debug("frame skipped: %s", e)
            return None

        state = self.classify(angles.knee)
        if state is not None:
            self.record_transition(tracker, state)

        outcome = None
        fault = None
        if state == PostureState.S1:
            outcome = self._close_rep(tracker)
        else:
            fault = self.check_form(tracker, angles)

        if state != tracker.prev_state:
            self._dbg(f"state→{state.value if state else 'none'} (knee={angles.knee:.1f})")
        tracker.prev_state = state

        return FrameResult(
            correct=tracker.correct,
            incorrect=tracker.incorrect,
            feedback=tracker.feedback,
            fault_raised=tracker.incorrect_posture,
            state=state,
            angles=angles,
            outcome=outcome,
            fault=fault,
        )
