"""
Pipeline State Machine
======================
Deterministic lifecycle for a single conversion run.

    IDLE → OPENING → PROCESSING_PAGE (per page) → FINALIZING → DONE

ERRORED is reachable from every non-idle state, CANCELLED from page
boundaries. Terminal states accept no further transitions.
"""

from __future__ import annotations

import logging

from .models import ConversionJob, PipelineState

logger = logging.getLogger(__name__)


class InvalidTransition(RuntimeError):
    """Raised when a run attempts an illegal state change."""


# ─── Transition Table ─────────────────────────────────────────────────────────

TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset({
        PipelineState.OPENING,
    }),
    PipelineState.OPENING: frozenset({
        PipelineState.PROCESSING_PAGE,
        PipelineState.FINALIZING,  # zero pages
        PipelineState.ERRORED,
        PipelineState.CANCELLED,
    }),
    PipelineState.PROCESSING_PAGE: frozenset({
        PipelineState.PROCESSING_PAGE,
        PipelineState.FINALIZING,
        PipelineState.ERRORED,
        PipelineState.CANCELLED,
    }),
    PipelineState.FINALIZING: frozenset({
        PipelineState.DONE,
        PipelineState.ERRORED,
    }),
    PipelineState.DONE: frozenset(),
    PipelineState.ERRORED: frozenset(),
    PipelineState.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(
    state for state, targets in TRANSITIONS.items() if not targets
)


class PipelineStateMachine:
    """
    Drives a ConversionJob through its states.
    The job record itself holds the state; the machine only validates and
    applies transitions to it.
    """

    def __init__(self, job: ConversionJob):
        self.job = job

    @property
    def state(self) -> PipelineState:
        return self.job.state

    @property
    def is_terminal(self) -> bool:
        return self.job.state in TERMINAL_STATES

    def can_transition(self, target: PipelineState) -> bool:
        return target in TRANSITIONS[self.job.state]

    def transition(self, target: PipelineState):
        """Apply a transition, raising InvalidTransition when illegal."""
        if not self.can_transition(target):
            raise InvalidTransition(
                f"Job {self.job.job_id}: {self.job.state.value} -> {target.value} not allowed"
            )
        logger.debug(f"Job {self.job.job_id}: {self.job.state.value} -> {target.value}")
        self.job.state = target

    def open(self):
        self.transition(PipelineState.OPENING)
        self.job.mark_started()

    def start_page(self, index: int):
        self.transition(PipelineState.PROCESSING_PAGE)
        self.job.current_page_index = index

    def finalize(self):
        self.transition(PipelineState.FINALIZING)

    def complete(self):
        self.transition(PipelineState.DONE)
        self.job.mark_completed()

    def fail(self, error: BaseException):
        """Move to ERRORED, recording the error kind and message."""
        if self.is_terminal:
            return
        self.transition(PipelineState.ERRORED)
        self.job.error_kind = getattr(error, "kind", type(error).__name__)
        self.job.error_message = str(error)
        self.job.mark_completed()

    def cancel(self):
        if self.is_terminal:
            return
        self.transition(PipelineState.CANCELLED)
        self.job.mark_completed()
