"""Attempt endpoints: view model plus action handles for the browser."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from attempt_engine.api.v1.live import EngineRegistry, LiveAttempt, get_registry
from attempt_engine.core.app_exceptions import ActionRejectedError
from attempt_engine.models.attempt import AttemptStatus
from attempt_engine.schemas.attempt import (
    ActionOut,
    AnswerIn,
    AttemptViewModel,
    JumpIn,
    SignalIn,
)

router = APIRouter()

Registry = Annotated[EngineRegistry, Depends(get_registry)]


# ============================================================================
# Helper Functions
# ============================================================================


def require_accepted(live: LiveAttempt, accepted: bool, action: str) -> ActionOut:
    """Turn an engine refusal into 409 ACTION_REJECTED."""
    view = live.engine.view()
    if not accepted:
        raise ActionRejectedError(
            f"Action '{action}' rejected",
            details={"action": action, "status": view.status.value},
        )
    return ActionOut(accepted=True, view=view)


def require_active(live: LiveAttempt, action: str) -> None:
    if live.engine.status is not AttemptStatus.ACTIVE:
        raise ActionRejectedError(
            f"Action '{action}' rejected",
            details={"action": action, "status": live.engine.status.value},
        )


# ============================================================================
# Lifecycle
# ============================================================================


@router.post("/{attempt_id}/load", response_model=AttemptViewModel)
async def load_attempt(attempt_id: str, registry: Registry):
    """
    Open (or reopen) an attempt.

    Resumes an attempt already started elsewhere and opens a submitted attempt
    read-only with results polling.
    """
    live = await registry.open(attempt_id)
    return live.engine.view()


@router.get("/{attempt_id}", response_model=AttemptViewModel)
async def get_attempt_view(attempt_id: str, registry: Registry):
    """Fresh view model snapshot (remaining time is recomputed on every read)."""
    return registry.get(attempt_id).engine.view()


@router.post("/{attempt_id}/activate", response_model=ActionOut)
async def activate_attempt(attempt_id: str, registry: Registry):
    """Start the timed attempt. The store assigns the start instant."""
    live = registry.get(attempt_id)
    accepted = await live.engine.activate()
    return require_accepted(live, accepted, "activate")


@router.delete("/{attempt_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_attempt(attempt_id: str, registry: Registry):
    """Tear down the engine. An active attempt stays resumable."""
    await registry.close(attempt_id)


# ============================================================================
# Answers & Navigation
# ============================================================================


@router.post("/{attempt_id}/answers", response_model=ActionOut)
async def record_answer(attempt_id: str, answer: AnswerIn, registry: Registry):
    """Record an answer locally; persistence happens in the background."""
    live = registry.get(attempt_id)
    accepted = live.engine.record_answer(answer.question_id, answer.value)
    return require_accepted(live, accepted, "record_answer")


@router.post("/{attempt_id}/next", response_model=ActionOut)
async def next_question(attempt_id: str, registry: Registry):
    live = registry.get(attempt_id)
    require_active(live, "next")
    moved = live.engine.next()
    return ActionOut(accepted=moved, view=live.engine.view())


@router.post("/{attempt_id}/previous", response_model=ActionOut)
async def previous_question(attempt_id: str, registry: Registry):
    live = registry.get(attempt_id)
    require_active(live, "previous")
    moved = live.engine.previous()
    return ActionOut(accepted=moved, view=live.engine.view())


@router.post("/{attempt_id}/jump", response_model=ActionOut)
async def jump_to_question(attempt_id: str, jump: JumpIn, registry: Registry):
    """Jump to a palette index."""
    live = registry.get(attempt_id)
    require_active(live, "jump_to")
    if jump.index >= live.engine.navigation.total:
        raise ActionRejectedError(
            "Question index out of range",
            details={"index": jump.index, "total": live.engine.navigation.total},
        )
    moved = live.engine.jump_to(jump.index)
    return ActionOut(accepted=moved, view=live.engine.view())


@router.post("/{attempt_id}/review", response_model=ActionOut)
async def toggle_review(attempt_id: str, registry: Registry):
    """Toggle marked-for-review on the current question."""
    live = registry.get(attempt_id)
    accepted = live.engine.toggle_review()
    return require_accepted(live, accepted, "toggle_review")


# ============================================================================
# Submission
# ============================================================================


@router.post("/{attempt_id}/submit", response_model=ActionOut)
async def request_submit(attempt_id: str, registry: Registry):
    """Open the submit confirmation."""
    live = registry.get(attempt_id)
    accepted = live.engine.request_submit()
    return require_accepted(live, accepted, "request_submit")


@router.post("/{attempt_id}/submit/confirm", response_model=ActionOut)
async def confirm_submit(attempt_id: str, registry: Registry):
    """
    Confirm and submit.

    A failed submit returns 200 with accepted=false and SUBMIT_FAILED in the
    view error; the attempt is back to ACTIVE and can be resubmitted.
    """
    live = registry.get(attempt_id)
    if not live.engine.confirmation_pending:
        raise ActionRejectedError(
            "No submit confirmation pending",
            details={"action": "confirm_submit", "status": live.engine.status.value},
        )
    accepted = await live.engine.confirm_submit()
    return ActionOut(accepted=accepted, view=live.engine.view())


@router.post("/{attempt_id}/submit/cancel", response_model=ActionOut)
async def cancel_submit(attempt_id: str, registry: Registry):
    live = registry.get(attempt_id)
    accepted = live.engine.cancel_submit()
    return ActionOut(accepted=accepted, view=live.engine.view())


# ============================================================================
# Integrity
# ============================================================================


@router.post("/{attempt_id}/signals", response_model=AttemptViewModel)
async def report_signal(attempt_id: str, signal: SignalIn, registry: Registry):
    """
    Browser-observed integrity signal.

    Signals arriving while the attempt is not active are ignored.
    """
    live = registry.get(attempt_id)
    live.relay.dispatch(signal.signal, signal.detail)
    return live.engine.view()


@router.post("/{attempt_id}/fullscreen", response_model=ActionOut)
async def request_fullscreen(attempt_id: str, registry: Registry):
    live = registry.get(attempt_id)
    require_active(live, "enter_fullscreen")
    accepted = await live.engine.enter_fullscreen()
    return ActionOut(accepted=accepted, view=live.engine.view())


@router.post("/{attempt_id}/media", response_model=ActionOut)
async def request_media(attempt_id: str, registry: Registry):
    live = registry.get(attempt_id)
    require_active(live, "start_media")
    accepted = await live.engine.start_media()
    return ActionOut(accepted=accepted, view=live.engine.view())
