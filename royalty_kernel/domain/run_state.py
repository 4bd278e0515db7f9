"""
Run state machine -- the single place where run transitions are defined.

Responsibility:
    Declares every legal edge of the royalty run lifecycle and which
    component is allowed to drive it.  RunLifecycleService, CalculationService
    and RollbackService all call check_transition(); none of them
    re-implement the rules.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - DRAFT -> CALCULATED only via a successful calculation pass.
    - CALCULATED -> LOCKED only via an approved lock (dispute gate and
      validation report are checked by the caller before the edge is taken).
    - CALCULATED|LOCKED -> DRAFT only via rollback.
    - Terminal statuses (COMPLETED, CANCELLED, FAILED) have no outgoing edges.
"""

from enum import Enum

from royalty_kernel.exceptions import InvalidTransitionError
from royalty_kernel.models.run import RunStatus


class TransitionSource(str, Enum):
    """Who is driving a transition."""

    DIRECT = "direct"
    CALCULATION = "calculation"
    LOCK_APPROVAL = "lock_approval"
    ROLLBACK = "rollback"


RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.DRAFT: frozenset(
        {RunStatus.CALCULATED, RunStatus.CANCELLED, RunStatus.FAILED}
    ),
    RunStatus.CALCULATED: frozenset({RunStatus.LOCKED, RunStatus.DRAFT}),
    RunStatus.LOCKED: frozenset({RunStatus.PROCESSING, RunStatus.DRAFT}),
    RunStatus.PROCESSING: frozenset({RunStatus.COMPLETED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.CANCELLED: frozenset(),
    RunStatus.FAILED: frozenset(),
}

# Edges reserved for one component.  Unlisted edges accept DIRECT.
RESERVED_EDGES: dict[tuple[RunStatus, RunStatus], TransitionSource] = {
    (RunStatus.DRAFT, RunStatus.CALCULATED): TransitionSource.CALCULATION,
    (RunStatus.CALCULATED, RunStatus.LOCKED): TransitionSource.LOCK_APPROVAL,
    (RunStatus.CALCULATED, RunStatus.DRAFT): TransitionSource.ROLLBACK,
    (RunStatus.LOCKED, RunStatus.DRAFT): TransitionSource.ROLLBACK,
}


def check_transition(
    run_id,
    current: RunStatus | str,
    target: RunStatus | str,
    source: TransitionSource = TransitionSource.DIRECT,
) -> None:
    """
    Raise InvalidTransitionError unless ``source`` may move a run from
    ``current`` to ``target``.
    """
    current = RunStatus(current)
    target = RunStatus(target)

    if target not in RUN_TRANSITIONS[current]:
        raise InvalidTransitionError(
            str(run_id), current.value, target.value, "edge not in the run lifecycle"
        )

    required = RESERVED_EDGES.get((current, target), TransitionSource.DIRECT)
    if required != source:
        raise InvalidTransitionError(
            str(run_id),
            current.value,
            target.value,
            f"only reachable via {required.value}",
        )


def allowed_targets(current: RunStatus | str) -> frozenset[RunStatus]:
    return RUN_TRANSITIONS[RunStatus(current)]
