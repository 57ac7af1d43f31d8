"""Upload lifecycle finite state machine.

Each stage change gets its own FSM instance, initialized at the record's
current stage.  Used to validate transition legality before
AsyncUploadStateStore persists the updated record.

The FSM is purely a validation tool -- it does NOT perform store writes or
have on_enter_state callbacks.  StageExecutor owns persistence.
"""

from __future__ import annotations

from statemachine import State, StateMachine

from walsync.upload.records import Stage


class UploadLifecycleSM(StateMachine):
    """Six-state lifecycle for a blob's journey onto Walrus.

    States:
        encoding   -- Nothing on-chain yet; encode + register pending.
        registered -- Ledger object exists; shares not yet on nodes.
        uploading  -- Shares written, node confirmations held.
        certifying -- Certification submitted or about to be.
        completed  -- Blob certified; record is deleted right after.
        failed     -- Certification (or a precondition) failed.

    No state has ``final=True``: ``completed`` and ``failed`` can both be
    reset to ``encoding``.
    """

    encoding = State("encoding", initial=True, value="encoding")
    registered = State("registered", value="registered")
    uploading = State("uploading", value="uploading")
    certifying = State("certifying", value="certifying")
    completed = State("completed", value="completed")
    failed = State("failed", value="failed")

    register = encoding.to(registered)
    store_shares = registered.to(uploading)
    begin_certify = uploading.to(certifying)
    certify = certifying.to(completed)
    fail = registered.to(failed) | uploading.to(failed) | certifying.to(failed)
    reset = (
        registered.to(encoding)
        | uploading.to(encoding)
        | certifying.to(encoding)
        | completed.to(encoding)
        | failed.to(encoding)
    )


def create_fsm(current_stage: Stage | str) -> UploadLifecycleSM:
    """Create an FSM instance at the given stage."""
    value = current_stage.value if isinstance(current_stage, Stage) else current_stage
    return UploadLifecycleSM(start_value=value)


def next_stage(current_stage: Stage, event: str) -> Stage:
    """Return the stage reached by firing *event* from *current_stage*.

    Raises:
        statemachine.exceptions.TransitionNotAllowed: If *event* is not
            legal from *current_stage*.
    """
    fsm = create_fsm(current_stage)
    fsm.send(event)
    return Stage(fsm.current_state.value)
