"""
GENERIC STATE MACHINE UTILITY

A small synchronous state machine for client-side workflows with:
- Transition registration with optional guards and handlers
- Transition validation
- Invalid transition rejection
- Per-entity transition history

Usage:
    machine = StateMachine("correction")
    machine.register("idle", "form_open")
    machine.register("form_open", "validating", guard=has_reason)

    machine.transition(attempt, "form_open")
"""

from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class StateMachineError(Exception):
    """Base exception for state machine errors."""
    pass


class InvalidTransitionError(StateMachineError):
    """Raised when attempting an invalid state transition."""
    def __init__(self, entity: str, from_state: str, to_state: str, allowed: List[str] = None):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed or []

        allowed_str = f" Allowed transitions from '{from_state}': {self.allowed}" if self.allowed else ""
        message = f"Invalid transition for {entity}: '{from_state}' -> '{to_state}'.{allowed_str}"
        super().__init__(message)


class GuardConditionError(StateMachineError):
    """Raised when guard condition prevents transition."""
    def __init__(self, entity: str, from_state: str, to_state: str, reason: str):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        message = f"Guard blocked {entity}: '{from_state}' -> '{to_state}': {reason}"
        super().__init__(message)


# Guard signature: def guard(entity, context) -> Tuple[bool, str]
GuardCondition = Callable[[Any, Dict[str, Any]], Tuple[bool, str]]

# Handler signature: def handler(entity, context) -> None
TransitionHandler = Callable[[Any, Dict[str, Any]], None]


class Transition:
    """Definition of a state transition."""

    def __init__(
        self,
        from_state: str,
        to_state: str,
        handler: Optional[TransitionHandler] = None,
        guard: Optional[GuardCondition] = None,
        description: str = ""
    ):
        self.from_state = from_state
        self.to_state = to_state
        self.handler = handler
        self.guard = guard
        self.description = description

    def __repr__(self):
        return f"Transition({self.from_state} -> {self.to_state})"


class StateMachine:
    """
    State machine over any object exposing a status attribute.

    The entity's `status_field` attribute holds the current state; when
    `history_field` is set, each transition appends an entry to that list.
    """

    def __init__(
        self,
        entity_name: str,
        status_field: str = "status",
        history_field: Optional[str] = "history"
    ):
        self.entity_name = entity_name
        self.status_field = status_field
        self.history_field = history_field

        self._transitions: Dict[Tuple[str, str], Transition] = {}
        self._states: Set[str] = set()

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def register(
        self,
        from_state: str,
        to_state: str,
        handler: Optional[TransitionHandler] = None,
        guard: Optional[GuardCondition] = None,
        description: str = ""
    ) -> "StateMachine":
        key = (from_state, to_state)

        if key in self._transitions:
            logger.warning(
                f"[STATE_MACHINE] Overwriting transition {self.entity_name}: "
                f"'{from_state}' -> '{to_state}'"
            )

        self._transitions[key] = Transition(from_state, to_state, handler, guard, description)
        self._states.add(from_state)
        self._states.add(to_state)
        return self

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def get_allowed_transitions(self, from_state: str) -> List[str]:
        return [dst for (src, dst) in self._transitions if src == from_state]

    def can_transition(self, from_state: str, to_state: str) -> bool:
        """Check if transition is registered (does not check guards)."""
        return (from_state, to_state) in self._transitions

    def validate_transition(self, from_state: str, to_state: str) -> None:
        if not self.can_transition(from_state, to_state):
            raise InvalidTransitionError(
                entity=self.entity_name,
                from_state=from_state,
                to_state=to_state,
                allowed=self.get_allowed_transitions(from_state)
            )

    def check_guard(self, entity: Any, from_state: str, to_state: str, context: Dict[str, Any]) -> None:
        transition = self._transitions.get((from_state, to_state))
        if transition and transition.guard:
            allowed, reason = transition.guard(entity, context)
            if not allowed:
                raise GuardConditionError(self.entity_name, from_state, to_state, reason)

    # =========================================================================
    # TRANSITION EXECUTION
    # =========================================================================

    def transition(self, entity: Any, to_state: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Move the entity to `to_state`.

        Raises:
            InvalidTransitionError: If transition not registered
            GuardConditionError: If guard condition fails
        """
        context = context or {}
        from_state = getattr(entity, self.status_field, None)

        if from_state is None:
            raise StateMachineError(f"Entity missing status field: {self.status_field}")

        self.validate_transition(from_state, to_state)
        self.check_guard(entity, from_state, to_state, context)

        transition = self._transitions[(from_state, to_state)]
        if transition.handler:
            transition.handler(entity, context)

        setattr(entity, self.status_field, to_state)

        entry = {
            "from_state": from_state,
            "to_state": to_state,
            "transitioned_at": datetime.now(timezone.utc),
        }
        if self.history_field:
            getattr(entity, self.history_field).append(entry)

        logger.debug(f"[STATE_MACHINE] {self.entity_name}: '{from_state}' -> '{to_state}'")
        return entry

    def get_states(self) -> List[str]:
        return sorted(self._states)

    def __repr__(self):
        return (
            f"StateMachine({self.entity_name}, "
            f"states={len(self._states)}, "
            f"transitions={len(self._transitions)})"
        )
