from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Union

from ..errors import ActionRejected
from .models import ActionRecord, ActionState, ActiveState, Unit, Verb


logger = logging.getLogger(__name__)

GRACE_PERIOD = 2.0

_OPTIMISTIC = {
    Verb.START: ActiveState.ACTIVATING,
    Verb.RESTART: ActiveState.ACTIVATING,
    Verb.RELOAD: ActiveState.ACTIVATING,
    Verb.STOP: ActiveState.DEACTIVATING,
}


@dataclass(slots=True, frozen=True)
class Accepted:
    record: ActionRecord


@dataclass(slots=True, frozen=True)
class Rejected:
    unit_name: str
    reason: str = "AlreadyPending"

    def as_error(self) -> ActionRejected:
        return ActionRejected(self.unit_name, self.reason)


IssueResult = Union[Accepted, Rejected]


class ActionTracker:
    """Lifecycle of user-issued control commands, one record per unit.

    A unit with a Pending record refuses further commands until the record
    resolves. Failed records stay until dismissed or replaced; succeeded ones
    expire after ``grace`` seconds.
    """

    def __init__(self, grace: float = GRACE_PERIOD, clock: Callable[[], float] = time.monotonic) -> None:
        self.grace = grace
        self._clock = clock
        self._records: dict[str, ActionRecord] = {}

    def get(self, unit_name: str) -> ActionRecord | None:
        return self._records.get(unit_name)

    def is_pending(self, unit_name: str) -> bool:
        rec = self._records.get(unit_name)
        return rec is not None and rec.pending

    def pending(self) -> list[ActionRecord]:
        return [r for r in self._records.values() if r.pending]

    @property
    def has_pending(self) -> bool:
        return any(r.pending for r in self._records.values())

    def failures(self) -> list[ActionRecord]:
        return [r for r in self._records.values() if r.failed]

    def issue(self, unit_name: str, verb: Verb) -> IssueResult:
        if self.is_pending(unit_name):
            logger.info("rejected %s of %s: action already pending", verb.value, unit_name)
            return Rejected(unit_name)
        record = ActionRecord(unit_name=unit_name, verb=verb, started_at=self._clock())
        self._records[unit_name] = record
        logger.info("issued %s of %s", verb.value, unit_name)
        return Accepted(record)

    def resolve(self, unit_name: str, verb: Verb, error: str | None = None) -> ActionRecord | None:
        rec = self._records.get(unit_name)
        if rec is None or not rec.pending or rec.verb is not verb:
            logger.debug("ignoring completion of %s for %s: no matching pending record", verb.value, unit_name)
            return None
        rec.finished_at = self._clock()
        if error is None:
            rec.state = ActionState.SUCCEEDED
            logger.info("%s of %s succeeded", verb.value, unit_name)
        else:
            rec.state = ActionState.FAILED
            rec.message = error
            logger.error("%s of %s failed: %s", verb.value, unit_name, error)
        return rec

    def dismiss(self, unit_name: str) -> bool:
        rec = self._records.get(unit_name)
        if rec is None or rec.pending:
            return False
        del self._records[unit_name]
        return True

    def expire(self, now: float | None = None) -> list[str]:
        now = self._clock() if now is None else now
        done = [
            name
            for name, rec in self._records.items()
            if rec.state is ActionState.SUCCEEDED and rec.finished_at is not None and now - rec.finished_at >= self.grace
        ]
        for name in done:
            del self._records[name]
        return done

    def display_state(self, unit: Unit) -> tuple[ActiveState, str]:
        """State and sub-state to show for ``unit``, annotated while a command is in flight."""
        rec = self._records.get(unit.name)
        if rec is None or not rec.pending:
            return unit.active_state, unit.sub_state
        state = _OPTIMISTIC.get(rec.verb, unit.active_state)
        sub = f"{unit.sub_state} (pending)" if unit.sub_state else "(pending)"
        return state, sub
