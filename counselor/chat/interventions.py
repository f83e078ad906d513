# counselor/chat/interventions.py
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional

from counselor.chat.timers import Scheduler, TimerSlot

logger = logging.getLogger(__name__)

NURSE_ALERT_THRESHOLD = 95
BREATHING_GUIDE_THRESHOLD = 90


class Intervention(str, Enum):
    NONE = "none"
    BREATHING_GUIDE = "breathing_guide"
    NURSE_ALERT = "nurse_alert"


def select_intervention(score: Optional[float]) -> Intervention:
    """
    Map a distress score to an overlay. First match wins:
      score > 95       -> nurse alert
      90 < score <= 95 -> breathing guide
      anything else    -> nothing
    """
    if score is None:
        return Intervention.NONE
    if score > NURSE_ALERT_THRESHOLD:
        return Intervention.NURSE_ALERT
    if score > BREATHING_GUIDE_THRESHOLD:
        return Intervention.BREATHING_GUIDE
    return Intervention.NONE


class BreathingCue(str, Enum):
    IDLE = "idle"
    INHALE = "inhale"
    HOLD = "hold"
    EXHALE = "exhale"


@dataclass(frozen=True)
class BreathingStep:
    key: str
    text: str
    duration: float  # seconds
    cue: BreathingCue


BREATHING_SEQUENCE: List[BreathingStep] = [
    BreathingStep("calm", "많이 흥분하셨네요.", 2.0, BreathingCue.IDLE),
    BreathingStep("prepare", "같이 심호흡을 해볼까요?", 2.0, BreathingCue.IDLE),
    BreathingStep("inhale", "5초 동안 들이마시기", 5.0, BreathingCue.INHALE),
    BreathingStep("hold", "5초 동안 숨 참기", 5.0, BreathingCue.HOLD),
    BreathingStep("exhale", "5초 동안 내쉬기", 5.0, BreathingCue.EXHALE),
]

BREATHING_CYCLES = 3
BREATHING_FADE_IN = 2.0
BREATHING_FADE_OUT = 2.0

NURSE_ALERT_FADE_IN = 0.02
NURSE_ALERT_HOLD = 10.0
NURSE_ALERT_FADE_OUT = 0.5


@dataclass(frozen=True)
class BreathingGuideState:
    active: bool = False
    visible: bool = False
    opaque: bool = False
    step_index: int = 0
    cycle: int = 0

    @property
    def current_step(self) -> Optional[BreathingStep]:
        if not self.visible:
            return None
        return BREATHING_SEQUENCE[self.step_index]

    @property
    def cycle_display(self) -> int:
        # 1-based counter shown next to the circle
        if not self.visible:
            return 0
        return min(self.cycle + 1, BREATHING_CYCLES)


@dataclass(frozen=True)
class NurseAlertState:
    visible: bool = False
    opaque: bool = False


class BreathingGuide:
    """
    Timed breathing exercise overlay.

    start() mounts the overlay transparent, fades it in after 2s and walks
    the five steps; after the third full cycle it fades out over 2s and
    unmounts. The step timer and the fade timer each live in their own slot,
    so a restart or stop() leaves nothing running.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        on_change: Optional[Callable[[BreathingGuideState], None]] = None,
    ):
        self.state = BreathingGuideState()
        self._on_change = on_change
        self._step_timer = TimerSlot(scheduler)
        self._fade_timer = TimerSlot(scheduler)

    def start(self) -> None:
        self._step_timer.cancel()
        self._fade_timer.cancel()

        self._set(BreathingGuideState(active=True, visible=True, opaque=False))
        self._fade_timer.schedule(BREATHING_FADE_IN, self._fade_in)
        self._schedule_step()

    def stop(self) -> None:
        self._step_timer.cancel()
        self._fade_timer.cancel()
        if self.state != BreathingGuideState():
            self._set(BreathingGuideState())

    def _fade_in(self) -> None:
        if self.state.visible:
            self._set(replace(self.state, opaque=True))

    def _schedule_step(self) -> None:
        step = BREATHING_SEQUENCE[self.state.step_index]
        self._step_timer.schedule(step.duration, self._advance)

    def _advance(self) -> None:
        state = self.state
        if not state.active:
            return

        if state.step_index < len(BREATHING_SEQUENCE) - 1:
            self._set(replace(state, step_index=state.step_index + 1))
            self._schedule_step()
            return

        if state.cycle < BREATHING_CYCLES - 1:
            self._set(replace(state, step_index=0, cycle=state.cycle + 1))
            self._schedule_step()
            return

        self._set(replace(state, active=False, opaque=False))
        self._fade_timer.schedule(BREATHING_FADE_OUT, self._unmount)

    def _unmount(self) -> None:
        self._set(BreathingGuideState())

    def _set(self, state: BreathingGuideState) -> None:
        self.state = state
        if self._on_change is not None:
            self._on_change(state)


class NurseAlert:
    """
    Urgent "call a nurse?" overlay: fade in after 20ms, hold 10s,
    fade out over 500ms, unmount. One timer slot drives the whole chain.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        on_change: Optional[Callable[[NurseAlertState], None]] = None,
    ):
        self.state = NurseAlertState()
        self._on_change = on_change
        self._timer = TimerSlot(scheduler)

    def trigger(self) -> None:
        self._timer.cancel()
        self._set(NurseAlertState(visible=True, opaque=False))
        self._timer.schedule(NURSE_ALERT_FADE_IN, self._fade_in)

    def stop(self) -> None:
        self._timer.cancel()
        if self.state != NurseAlertState():
            self._set(NurseAlertState())

    def _fade_in(self) -> None:
        if self.state.visible:
            self._set(replace(self.state, opaque=True))
        self._timer.schedule(NURSE_ALERT_HOLD, self._fade_out)

    def _fade_out(self) -> None:
        if self.state.visible:
            self._set(replace(self.state, opaque=False))
        self._timer.schedule(NURSE_ALERT_FADE_OUT, self._hide)

    def _hide(self) -> None:
        self._set(NurseAlertState())

    def _set(self, state: NurseAlertState) -> None:
        self.state = state
        if self._on_change is not None:
            self._on_change(state)


class InterventionEngine:
    def __init__(
        self,
        scheduler: Scheduler,
        breathing: Optional[BreathingGuide] = None,
        nurse_alert: Optional[NurseAlert] = None,
    ):
        self.breathing = breathing or BreathingGuide(scheduler)
        self.nurse_alert = nurse_alert or NurseAlert(scheduler)

    def apply(self, score: Optional[float]) -> Intervention:
        intervention = select_intervention(score)
        if intervention is Intervention.NURSE_ALERT:
            logger.warning("Distress score %s: showing nurse alert", score)
            self.nurse_alert.trigger()
        elif intervention is Intervention.BREATHING_GUIDE:
            logger.info("Distress score %s: starting breathing guide", score)
            self.breathing.start()
        return intervention

    def stop_all(self) -> None:
        self.breathing.stop()
        self.nurse_alert.stop()
