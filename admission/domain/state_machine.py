"""Appointment admission state machine.

The transition table is the single authority on which ``(status, action)``
pairs exist. Planning a transition first checks the table, then the action's
time or sub-state guard, and returns either a :class:`TransitionPlan` or a
failure value. Nothing here touches storage or raises for a rejected action.
"""

from collections.abc import Iterable
from datetime import datetime

from admission.core.clock import ClinicClock, ensure_utc
from admission.core.exceptions import HistoryIntegrityError
from admission.domain import guards
from admission.domain.guards import AdmissionPolicy
from admission.domain.schedule_rules import ScheduleRules, validate_reschedule_target
from admission.schemas.admission import (
    AuditEntry,
    GuardReason,
    GuardRejected,
    GuardResult,
    IllegalTransition,
    TransitionPlan,
)
from admission.schemas.appointments import (
    AppointmentAction,
    AppointmentSnapshot,
    AppointmentStatus,
)

S = AppointmentStatus
A = AppointmentAction

# action -> (allowed source statuses, resulting status)
TRANSITIONS: dict[AppointmentAction, tuple[frozenset[AppointmentStatus], AppointmentStatus]] = {
    A.CONFIRM: (frozenset({S.SCHEDULED}), S.CONFIRMED),
    A.CHECK_IN: (frozenset({S.SCHEDULED, S.CONFIRMED}), S.CHECKED_IN),
    A.COMPLETE: (frozenset({S.CHECKED_IN}), S.COMPLETED),
    A.CANCEL: (frozenset({S.SCHEDULED, S.CONFIRMED, S.CHECKED_IN}), S.CANCELLED),
    A.MARK_NO_SHOW: (frozenset({S.SCHEDULED, S.CONFIRMED}), S.NO_SHOW),
    A.RESCHEDULE: (
        frozenset({S.SCHEDULED, S.CONFIRMED, S.CHECKED_IN, S.NO_SHOW}),
        S.RESCHEDULED,
    ),
    A.COMPLETE_RESCHEDULE: (frozenset({S.RESCHEDULED}), S.SCHEDULED),
}

INITIAL_STATUS = AppointmentStatus.SCHEDULED

# Normal admission flow, in the order staff would expect to act
SUGGESTION_ORDER = (A.CHECK_IN, A.COMPLETE)


def allowed_sources(action: AppointmentAction) -> frozenset[AppointmentStatus]:
    """Statuses from which an action is defined."""
    return TRANSITIONS[action][0]


def resulting_status(
    status: AppointmentStatus, action: AppointmentAction
) -> AppointmentStatus | None:
    """Status an action leads to from ``status``, or None if the pair is not in the table."""
    sources, target = TRANSITIONS[action]
    return target if status in sources else None


def _action_label(action: AppointmentAction) -> str:
    return action.value.replace("_", " ")


def illegal_transition(
    appointment: AppointmentSnapshot, action: AppointmentAction
) -> IllegalTransition:
    """Build the failure for a pair outside the transition table."""
    return IllegalTransition(
        appointment_id=appointment.id,
        from_status=appointment.status,
        action=action,
        message=(
            f"Action '{action.value}' is not allowed from status '{appointment.status.value}'."
        ),
    )


def _guard_rejected(
    appointment: AppointmentSnapshot, action: AppointmentAction, result: GuardResult
) -> GuardRejected:
    return GuardRejected(
        appointment_id=appointment.id,
        action=action,
        reason=result.reason or GuardReason.INVALID_STATUS,
        details=result.details,
        message=result.message or f"Cannot {_action_label(action)} right now.",
    )


def run_guard(
    appointment: AppointmentSnapshot,
    action: AppointmentAction,
    now: datetime,
    policy: AdmissionPolicy,
    clock: ClinicClock,
) -> GuardResult:
    """Evaluate the guard attached to an action; unguarded actions are allowed."""
    if action == A.CHECK_IN:
        return guards.can_check_in(appointment, now, policy, clock)
    if action == A.MARK_NO_SHOW:
        return guards.can_mark_no_show(appointment, now, policy, clock)
    if action == A.COMPLETE:
        return guards.can_complete(appointment)
    if action == A.CANCEL:
        return guards.can_cancel(appointment)
    if action == A.RESCHEDULE:
        return guards.can_reschedule(appointment)
    if action == A.CONFIRM:
        return guards.can_confirm(appointment)
    return GuardResult.allow()


def plan_transition(
    appointment: AppointmentSnapshot,
    action: AppointmentAction,
    now: datetime,
    *,
    policy: AdmissionPolicy,
    clock: ClinicClock,
    schedule_rules: ScheduleRules | None = None,
    new_scheduled_at: datetime | None = None,
) -> TransitionPlan | IllegalTransition | GuardRejected:
    """
    Decide whether ``action`` may be applied to ``appointment`` at ``now``.

    Args:
        appointment: Current status snapshot
        action: Requested action
        now: Instant the request is evaluated at
        policy: Admission time windows
        clock: Clinic clock
        schedule_rules: Rules for reschedule targets (reschedule step 1 only)
        new_scheduled_at: Target time for reschedule steps

    Returns:
        A plan, ``IllegalTransition`` for a pair outside the table, or
        ``GuardRejected`` when the pair is legal but forbidden right now
    """
    target = resulting_status(appointment.status, action)
    if target is None:
        return illegal_transition(appointment, action)

    guard = run_guard(appointment, action, now, policy, clock)
    if not guard.allowed:
        return _guard_rejected(appointment, action, guard)

    if action in (A.RESCHEDULE, A.COMPLETE_RESCHEDULE):
        if new_scheduled_at is None:
            return _guard_rejected(
                appointment,
                action,
                GuardResult.deny(
                    GuardReason.INVALID_RESCHEDULE_TARGET,
                    "A new appointment time is required to reschedule.",
                    rule="required",
                ),
            )
        new_scheduled_at = ensure_utc(new_scheduled_at)

    if action == A.RESCHEDULE:
        if new_scheduled_at == ensure_utc(appointment.scheduled_at):
            return _guard_rejected(
                appointment,
                action,
                GuardResult.deny(
                    GuardReason.INVALID_RESCHEDULE_TARGET,
                    "The new appointment time is the same as the current one.",
                    rule="unchanged",
                ),
            )
        if schedule_rules is not None:
            slot = validate_reschedule_target(new_scheduled_at, now, clock, schedule_rules)
            if not slot.allowed:
                return _guard_rejected(appointment, action, slot)

    return TransitionPlan(
        action=action,
        from_status=appointment.status,
        to_status=target,
        new_scheduled_at=new_scheduled_at,
    )


def evaluate_guards(
    appointment: AppointmentSnapshot,
    now: datetime,
    policy: AdmissionPolicy,
    clock: ClinicClock,
) -> dict[AppointmentAction, GuardResult]:
    """
    Evaluate every public action without attempting any of them.

    An action outside the transition table is never reported as allowed; its
    guard's own denial is kept when it says more than the status alone (for
    example ``not_yet_checked_in`` for ``complete``). A reschedule left
    half-done is reported as allowed, since re-submitting it resumes the
    pending second step.
    """
    results: dict[AppointmentAction, GuardResult] = {}
    for action in TRANSITIONS:
        if not action.is_public:
            continue
        if action == A.RESCHEDULE and appointment.status == S.RESCHEDULED:
            results[action] = GuardResult.allow(resume=True)
            continue
        result = run_guard(appointment, action, now, policy, clock)
        if result.allowed and resulting_status(appointment.status, action) is None:
            result = guards.status_denial(appointment.status, _action_label(action))
        results[action] = result
    return results


def suggest_action(results: dict[AppointmentAction, GuardResult]) -> AppointmentAction | None:
    """Pick the next step of the normal admission flow, if one is available."""
    for action in SUGGESTION_ORDER:
        result = results.get(action)
        if result is not None and result.allowed:
            return action
    return None


def replay_history(
    entries: Iterable[AuditEntry],
    initial: AppointmentStatus = INITIAL_STATUS,
) -> AppointmentStatus:
    """
    Fold audit entries, oldest first, into the status they imply.

    Raises:
        HistoryIntegrityError: If an entry does not continue from the previous one
            or records a pair that is not in the transition table
    """
    status = initial
    for entry in entries:
        if entry.from_status != status:
            raise HistoryIntegrityError(
                f"Audit entry {entry.id} starts from {entry.from_status.value}, "
                f"expected {status.value}"
            )
        if resulting_status(entry.from_status, entry.action) != entry.to_status:
            raise HistoryIntegrityError(
                f"Audit entry {entry.id} records an undefined transition "
                f"{entry.from_status.value} -[{entry.action.value}]-> {entry.to_status.value}"
            )
        status = entry.to_status
    return status
