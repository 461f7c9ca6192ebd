"""Phase workflow."""

from specsync.core.workflow.transition import PhaseTransitionController, TransitionResult

__all__ = ["PhaseTransitionController", "TransitionResult"]
