"""Stack compatibility gate.

A cache produced on one stack (OS/toolchain image) may be unusable on
another.  The gate compares the stack id recorded in the cache manifest with
the stack the step runs on and decides whether the restore may go ahead:

=====================  =====================  ==========  =========================
manifest stack         current stack          fallback    outcome
=====================  =====================  ==========  =========================
``A``                  ``A``                  any         ``PROCEED``
unset                  any                    any         ``PROCEED``
any                    unset                  any         ``PROCEED``
``A``                  ``B``                  ``False``   ``ABORT``
``A``                  ``B``                  ``True``    ``PROCEED_WITH_FALLBACK``
=====================  =====================  ==========  =========================

The check is a pure function; logging and raising are left to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import StackMismatchError

__all__ = ["GateDecision", "GateOutcome", "check_stack_compatibility"]


# ============================================================================
# Decision Types
# ============================================================================


class GateOutcome(str, Enum):
    PROCEED = "proceed"
    PROCEED_WITH_FALLBACK = "proceed_with_fallback"
    ABORT = "abort"


@dataclass(frozen=True)
class GateDecision:
    """Result of :func:`check_stack_compatibility`."""

    outcome: GateOutcome
    manifest_stack_id: Optional[str]
    current_stack_id: Optional[str]
    reason: str

    @property
    def proceed(self) -> bool:
        return self.outcome is not GateOutcome.ABORT

    @property
    def mismatch(self) -> bool:
        return self.outcome is not GateOutcome.PROCEED

    def raise_for_abort(self) -> None:
        """Raise :class:`StackMismatchError` when the decision is ``ABORT``."""

        if self.outcome is GateOutcome.ABORT:
            raise StackMismatchError(
                self.reason,
                manifest_stack_id=self.manifest_stack_id,
                current_stack_id=self.current_stack_id,
            )


# ============================================================================
# Gate
# ============================================================================


def check_stack_compatibility(
    manifest_stack_id: Optional[str],
    current_stack_id: Optional[str],
    allow_fallback: bool,
) -> GateDecision:
    """Decide whether a cache built on ``manifest_stack_id`` may be restored here.

    Stack ids are opaque tokens compared for exact equality.  An empty or
    missing id on either side means "don't care" and never blocks.

    Examples:
        >>> check_stack_compatibility("osx-xcode-12", "osx-xcode-12", False).outcome.value
        'proceed'
        >>> check_stack_compatibility("osx-xcode-12", "osx-xcode-13", False).outcome.value
        'abort'
    """

    if not manifest_stack_id or not current_stack_id:
        return GateDecision(
            outcome=GateOutcome.PROCEED,
            manifest_stack_id=manifest_stack_id,
            current_stack_id=current_stack_id,
            reason="stack id not set, compatibility not checked",
        )
    if manifest_stack_id == current_stack_id:
        return GateDecision(
            outcome=GateOutcome.PROCEED,
            manifest_stack_id=manifest_stack_id,
            current_stack_id=current_stack_id,
            reason=f"cache was created on the current stack ({current_stack_id})",
        )
    if allow_fallback:
        return GateDecision(
            outcome=GateOutcome.PROCEED_WITH_FALLBACK,
            manifest_stack_id=manifest_stack_id,
            current_stack_id=current_stack_id,
            reason=(
                f"cache was created on stack {manifest_stack_id} but the current stack is "
                f"{current_stack_id}; restoring anyway because fallback is allowed"
            ),
        )
    return GateDecision(
        outcome=GateOutcome.ABORT,
        manifest_stack_id=manifest_stack_id,
        current_stack_id=current_stack_id,
        reason=(
            f"Cache was created on stack: {manifest_stack_id}, current stack: "
            f"{current_stack_id} and fallback is not allowed"
        ),
    )
