"""
Heuristic scoring of candidate browser actions.

The evaluator keeps a coarse success rate per interaction pattern and nudges
it after each observed outcome. It only ranks; the agent loop executes the
model's tool calls regardless of what the evaluator thinks of them.
"""
import logging
import math
from typing import Dict, Iterable, List, Optional, Union

from .models import (
    Action,
    ActionCandidate,
    ActionEvaluation,
    ActionType,
    BrowserState,
    Goal,
    PredictedEffect,
)

logger = logging.getLogger(__name__)

POINTER_PRECISION = "pointer_precision"
TEXT_INPUT = "text_input"
VIEWPORT_SCROLLING = "viewport_scrolling"
CLICK_ACTIONS = "click_actions"

DIRECT_NAVIGATION = "direct_navigation"
FORM_INTERACTION = "form_interaction"
CONTENT_SCANNING = "content_scanning"
SPATIAL_MEMORY = "spatial_memory"

DEFAULT_PATTERN_RATES = {
    DIRECT_NAVIGATION: 0.9,
    FORM_INTERACTION: 0.85,
    CONTENT_SCANNING: 0.95,
    SPATIAL_MEMORY: 0.8,
}

MIN_RATE = 0.1
MAX_RATE = 0.99
RATE_STEP = 0.01
MAX_SCREEN_DISTANCE = 2000.0  # Assumed screen diagonal in pixels
FIT_WEIGHT = 0.6
RELIABILITY_WEIGHT = 0.4
PLAN_SIZE = 3

_CAPABILITY_BY_ACTION = {
    ActionType.MOUSE_MOVE: POINTER_PRECISION,
    ActionType.TYPE: TEXT_INPUT,
    ActionType.LEFT_CLICK: CLICK_ACTIONS,
    ActionType.RIGHT_CLICK: CLICK_ACTIONS,
    ActionType.MIDDLE_CLICK: CLICK_ACTIONS,
    ActionType.DOUBLE_CLICK: CLICK_ACTIONS,
}

Scorable = Union[Action, ActionCandidate]


def _as_candidate(action: Scorable) -> ActionCandidate:
    if isinstance(action, ActionCandidate):
        return action
    return ActionCandidate(type=action.type, coordinate=action.coordinate, text=action.text)


class ActionSpaceEvaluator:
    """Scores actions by capability fit and recent pattern reliability"""

    def __init__(self, capabilities: Optional[Iterable[str]] = None):
        self.capabilities = set(
            capabilities if capabilities is not None
            else (POINTER_PRECISION, TEXT_INPUT, VIEWPORT_SCROLLING, CLICK_ACTIONS)
        )
        self.pattern_rates: Dict[str, float] = dict(DEFAULT_PATTERN_RATES)
        self.last_known_state = BrowserState()

    # ==============================================================
    # STATE
    # ==============================================================

    def observe(self, state: BrowserState) -> None:
        self.last_known_state = state

    def possible_actions(self, state: Optional[BrowserState] = None) -> List[ActionCandidate]:
        """A move and a left click for every interactable element with a position"""
        if state is not None:
            self.observe(state)
        candidates = []
        for element in self.last_known_state.interactable_elements:
            if element.position is None:
                continue
            coordinate = element.position.as_tuple()
            candidates.append(ActionCandidate(type=ActionType.MOUSE_MOVE, target=element, coordinate=coordinate))
            candidates.append(ActionCandidate(type=ActionType.LEFT_CLICK, target=element, coordinate=coordinate))
        return candidates

    # ==============================================================
    # PATTERNS
    # ==============================================================

    def capability_for(self, action: Scorable) -> str:
        return _CAPABILITY_BY_ACTION.get(action.type, "unknown")

    def pattern_for(self, action: Scorable) -> str:
        candidate = _as_candidate(action)
        if candidate.type == ActionType.TYPE:
            return FORM_INTERACTION
        if candidate.type == ActionType.MOUSE_MOVE:
            return SPATIAL_MEMORY
        if candidate.target is not None and candidate.target.type == "a":
            return DIRECT_NAVIGATION
        return CONTENT_SCANNING

    def success_rate(self, pattern: str) -> float:
        return self.pattern_rates.get(pattern, 0.5)

    def record_outcome(self, action: Scorable, success: bool) -> float:
        """Nudge the pattern's success rate; returns the new rate"""
        pattern = self.pattern_for(action)
        delta = RATE_STEP if success else -RATE_STEP
        new_rate = max(MIN_RATE, min(MAX_RATE, self.success_rate(pattern) + delta))
        self.pattern_rates[pattern] = new_rate
        logger.debug(f"Pattern {pattern} -> {new_rate:.2f} after {'success' if success else 'failure'}")
        return new_rate

    # ==============================================================
    # SCORING
    # ==============================================================

    def movement_efficiency(self, action: Scorable) -> float:
        """Closer moves score higher; 0 when the target has no known position"""
        candidate = _as_candidate(action)
        if candidate.target is not None and candidate.target.position is not None:
            target = candidate.target.position.as_tuple()
        elif candidate.coordinate is not None:
            target = candidate.coordinate
        else:
            return 0.0

        active = self.last_known_state.active_element
        origin = active.position.as_tuple() if active is not None and active.position is not None else (0.0, 0.0)
        distance = math.hypot(target[0] - origin[0], target[1] - origin[1])
        return max(0.0, 1 - distance / MAX_SCREEN_DISTANCE)

    def action_fit(self, action: Scorable) -> float:
        if self.capability_for(action) not in self.capabilities:
            return 0.0
        if action.type == ActionType.MOUSE_MOVE:
            return self.movement_efficiency(action)
        return self.success_rate(self.pattern_for(action))

    def reliability(self, action: Scorable) -> float:
        supported = 0.8 if self.capability_for(action) in self.capabilities else 0.2
        return supported * self.success_rate(self.pattern_for(action))

    def calculate_utility(self, action: Scorable, goal: Optional[Goal] = None) -> float:
        return FIT_WEIGHT * self.action_fit(action) + RELIABILITY_WEIGHT * self.reliability(action)

    def knowledge_gain(self, action: Scorable) -> float:
        """Less reliable patterns have more to teach"""
        return 1 - self.success_rate(self.pattern_for(action))

    def predict_effect(self, action: Scorable) -> PredictedEffect:
        candidate = _as_candidate(action)
        state = self.last_known_state
        if candidate.type in (ActionType.MOUSE_MOVE, ActionType.LEFT_CLICK):
            url = state.url
            if (
                candidate.type == ActionType.LEFT_CLICK
                and candidate.target is not None
                and candidate.target.type == "a"
                and candidate.target.attributes.get("href")
            ):
                url = candidate.target.attributes["href"]
            predicted = {
                "active_element": candidate.target.model_dump() if candidate.target else None,
                "url": url,
            }
        else:
            predicted = state.model_dump()
        return PredictedEffect(state=predicted, probability=self.reliability(action))

    def evaluate(self, action: Scorable, goal: Optional[Goal] = None) -> ActionEvaluation:
        reliability = self.reliability(action)
        return ActionEvaluation(
            utility=self.calculate_utility(action, goal),
            epistemic_value=self.success_rate(self.pattern_for(action)),
            confidence=reliability,
            predicted_effect=self.predict_effect(action),
        )

    def rank(self, candidates: Iterable[Scorable], goal: Optional[Goal] = None) -> List[Scorable]:
        return sorted(candidates, key=lambda a: self.calculate_utility(a, goal), reverse=True)

    def plan_action_sequence(self, goal: Optional[Goal] = None) -> List[ActionCandidate]:
        """
        Top candidates for the last known state. They go stale as soon as the
        page changes, so re-plan after every executed action.
        """
        return self.rank(self.possible_actions(), goal)[:PLAN_SIZE]
