"""
Schedule recalculation engine.

Pure, in-memory computation over a snapshot of one project's schedule:

    snapshot (StepSnapshot list)  ──▶  RecalculationEngine  ──▶  RecalcResult
                                                                 (patches + alert drafts)

The engine never touches the database. schedule_service loads the snapshot,
calls one engine operation and writes the result back in a single batch.

Operations:
    - complete:        mark a step done today, cascade every later step
    - cascade_from_completed:
                       forward walk after a completion (days ahead/behind,
                       delay rules, urgent supplier alerts)
    - uncomplete:      revert a completion and restore the estimated plan
    - apply_edit:      manual edit of one step, then forward cascade
    - regenerate:      repair incoherent completed rows and re-chain the rest
    - plan_from:       chain every step from a target start date

Invariants:
    - steps are walked in ExecutionOrder rank, never by stored or date order
    - every non-completed step starts no earlier than its delay rule allows
    - completed steps are fixed points; the cursor never moves backward past
      a completed step's end
    - for every row with both dates, end_date >= start_date
    - running the same operation twice with the same ``today`` yields the same
      dates (the second run produces no patches)
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping

from app.core.exceptions import IntegrityViolationError, InvalidDurationError, NotFoundError
from app.services.schedule_calendar import (
    add_business_days,
    business_day_diff,
    end_for_duration,
    next_business_day,
    sub_business_days,
    to_iso,
)
from app.services.schedule_rules import (
    DEFAULT_EXECUTION_ORDER,
    DELAY_RULES,
    DelayRule,
    ExecutionOrder,
    rule_earliest_start,
)

logger = logging.getLogger(__name__)

PENDING = "pending"
SCHEDULED = "scheduled"
COMPLETED = "completed"

URGENT_CALL_DAYS_AHEAD = 5
URGENT_CALL_DAYS_PAST = 2

# Raised by a cascade only; never rebuilt from a row's own fields.
CASCADE_ALERT_TYPES = frozenset({"urgent_supplier_call", "schedule_delayed"})


def clamp_duration(days) -> int:
    """Durations below one business day are treated as one day."""
    try:
        days = int(days or 0)
    except (TypeError, ValueError):
        return 1
    return days if days >= 1 else 1


# ── Snapshot types ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SupplierInfo:
    name: str | None = None
    phone: str | None = None
    schedule_lead_days: int = 0
    fabrication_lead_days: int = 0
    fabrication_start_date: date | None = None

    @property
    def display_name(self) -> str:
        return self.name or "the supplier"


@dataclass(frozen=True)
class MeasurementInfo:
    required: bool = False
    after_step_id: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class StepSnapshot:
    """Immutable view of one schedule row, as the engine sees it."""

    id: int
    step_id: str
    step_name: str
    trade_type: str = "autre"
    estimated_days: int = 1
    actual_days: int | None = None
    start_date: date | None = None
    end_date: date | None = None
    status: str = PENDING
    supplier: SupplierInfo = field(default_factory=SupplierInfo)
    measurement: MeasurementInfo = field(default_factory=MeasurementInfo)

    @property
    def duration(self) -> int:
        """Working duration: realised days when known, else the estimate."""
        return clamp_duration(self.actual_days or self.estimated_days)

    @property
    def planned_duration(self) -> int:
        return clamp_duration(self.estimated_days)

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    def replace(self, **changes) -> "StepSnapshot":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class AlertDraft:
    schedule_item_id: int
    alert_type: str
    alert_date: date
    message: str

    def to_dict(self) -> dict:
        return {
            "schedule_item_id": self.schedule_item_id,
            "alert_type": self.alert_type,
            "alert_date": to_iso(self.alert_date),
            "message": self.message,
        }


@dataclass
class RecalcResult:
    """Outcome of one engine operation.

    patches:          schedule item id → changed columns only
    alerts:           drafts replacing the alerts of every id in alert_item_ids
    alert_item_ids:   items whose alerts must be deleted and regenerated
    final:            item id → snapshot after the operation
    """

    days_ahead: int = 0
    patches: dict[int, dict] = field(default_factory=dict)
    alerts: list[AlertDraft] = field(default_factory=list)
    alert_item_ids: set[int] = field(default_factory=set)
    final: dict[int, StepSnapshot] = field(default_factory=dict)

    @property
    def touched(self) -> int:
        return len(self.patches)

    @property
    def alerts_created(self) -> int:
        return len(self.alerts)

    def stage(self, snap: StepSnapshot, **changes) -> StepSnapshot:
        """Record column changes for ``snap``; unchanged values are dropped."""
        current = self.final.get(snap.id, snap)
        diff = {k: v for k, v in changes.items() if getattr(current, k) != v}
        if not diff:
            return current
        updated = current.replace(**diff)
        self.final[snap.id] = updated
        self.patches.setdefault(snap.id, {}).update(diff)
        return updated

    def summary(self) -> dict:
        return {"days_ahead": self.days_ahead, "alerts_created": self.alerts_created}


# ── Engine ───────────────────────────────────────────────────────────────────


class RecalculationEngine:
    """Cascading date recomputation over one project's schedule snapshot.

    Args:
        order:        execution order table.
        delay_rules:  step id → DelayRule.
        urgent_days_ahead / urgent_days_past:
                      window (business days relative to today) in which a
                      moved supplier call date raises an urgent alert.
    """

    def __init__(
        self,
        order: ExecutionOrder = DEFAULT_EXECUTION_ORDER,
        delay_rules: Mapping[str, DelayRule] = DELAY_RULES,
        urgent_days_ahead: int = URGENT_CALL_DAYS_AHEAD,
        urgent_days_past: int = URGENT_CALL_DAYS_PAST,
    ):
        self.order = order
        self.delay_rules = delay_rules
        self.urgent_days_ahead = urgent_days_ahead
        self.urgent_days_past = urgent_days_past

    # ── helpers ──────────────────────────────────────────────────────────

    def sort(self, items: Iterable[StepSnapshot]) -> list[StepSnapshot]:
        ordered = self.order.sort(items)
        seen: set[str] = set()
        for snap in ordered:
            if snap.step_id in seen:
                raise IntegrityViolationError(
                    f"Duplicate schedule rows for step {snap.step_id!r}"
                )
            seen.add(snap.step_id)
        return ordered

    @staticmethod
    def _find(ordered: list[StepSnapshot], schedule_id) -> int:
        for index, snap in enumerate(ordered):
            if snap.id == schedule_id:
                return index
        raise NotFoundError(resource="ScheduleItem", resource_id=schedule_id)

    def _constrained_start(self, step_id: str, cursor: date, end_dates: Mapping[str, date]) -> date:
        """Later of the cascaded cursor and the step's delay-rule earliest start."""
        required = rule_earliest_start(step_id, end_dates, self.delay_rules)
        if required is not None and required > cursor:
            return next_business_day(required)
        return cursor

    def _walk(
        self,
        steps: list[StepSnapshot],
        cursor: date,
        end_dates: dict[str, date],
        result: RecalcResult,
        today: date,
        *,
        planned_only: bool = False,
        urgency: bool = False,
        keep_status: frozenset = frozenset(),
    ) -> date:
        """Chain every non-completed step from ``cursor``; completed ones are fixed points."""
        for snap in steps:
            snap = result.final.get(snap.id, snap)
            if snap.is_completed:
                if snap.end_date:
                    end_dates[snap.step_id] = snap.end_date
                    after = add_business_days(snap.end_date, 1)
                    if after > cursor:
                        cursor = after
                continue

            was_dated = snap.start_date is not None
            start = self._constrained_start(snap.step_id, cursor, end_dates)
            duration = snap.planned_duration if planned_only else snap.duration
            end = end_for_duration(start, duration)
            end_dates[snap.step_id] = end

            changes = {"start_date": start, "end_date": end}
            if snap.status == PENDING and snap.id not in keep_status:
                changes["status"] = SCHEDULED
            updated = result.stage(snap, **changes)

            # Suppliers are only re-notified about dates they were already given.
            if urgency and was_dated:
                self._urgent_supplier_alert(updated, result, today)

            cursor = add_business_days(end, 1)
        return cursor

    def _urgent_supplier_alert(self, snap: StepSnapshot, result: RecalcResult, today: date):
        lead = snap.supplier.schedule_lead_days or 0
        if lead <= 0 or snap.start_date is None:
            return
        call_date = sub_business_days(snap.start_date, lead)
        days_until_call = business_day_diff(call_date, today)

        if result.days_ahead > 0 and -self.urgent_days_past <= days_until_call <= self.urgent_days_ahead:
            message = (
                f"URGENT: call {snap.supplier.display_name} for {snap.step_name}. "
                f"The project is ahead of schedule; new start date {to_iso(snap.start_date)}."
            )
            alert_type = "urgent_supplier_call"
        elif result.days_ahead < 0:
            message = (
                f"DELAYED: {snap.step_name} moved to {to_iso(snap.start_date)} "
                f"({abs(result.days_ahead)} business day(s) late). "
                f"Notify {snap.supplier.display_name}."
            )
            alert_type = "schedule_delayed"
        else:
            return

        result.alerts.append(AlertDraft(snap.id, alert_type, today, message))
        result.alert_item_ids.add(snap.id)

    def _standard_alerts(self, snap: StepSnapshot, by_step: Mapping[str, StepSnapshot]) -> list[AlertDraft]:
        """Supplier call, fabrication start and measurement reminders for one row."""
        if snap.is_completed or snap.start_date is None:
            return []
        drafts = []
        if snap.supplier.schedule_lead_days > 0:
            drafts.append(AlertDraft(
                snap.id,
                "supplier_call",
                sub_business_days(snap.start_date, snap.supplier.schedule_lead_days),
                f"Call {snap.supplier.display_name} for {snap.step_name}",
            ))
        if snap.supplier.fabrication_lead_days > 0:
            drafts.append(AlertDraft(
                snap.id,
                "fabrication_start",
                sub_business_days(snap.start_date, snap.supplier.fabrication_lead_days),
                f"Start fabrication for {snap.step_name}",
            ))
        if snap.measurement.required and snap.measurement.after_step_id:
            previous = by_step.get(snap.measurement.after_step_id)
            if previous is not None and previous.end_date:
                notes = f" - {snap.measurement.notes}" if snap.measurement.notes else ""
                drafts.append(AlertDraft(
                    snap.id,
                    "measurement",
                    previous.end_date,
                    f"Take measurements for {snap.step_name}{notes}",
                ))
        return drafts

    def _finish(self, ordered: list[StepSnapshot], result: RecalcResult) -> RecalcResult:
        """Validate final dates and build alerts for every changed row."""
        final = [result.final.get(s.id, s) for s in ordered]
        for snap in final:
            if snap.start_date and snap.end_date and snap.end_date < snap.start_date:
                raise IntegrityViolationError(
                    f"{snap.step_id}: end_date {to_iso(snap.end_date)} "
                    f"is before start_date {to_iso(snap.start_date)}"
                )
            result.final[snap.id] = snap

        by_step = {s.step_id: s for s in final}
        changed_dates = {
            item_id for item_id, patch in result.patches.items()
            if {"start_date", "end_date", "status"} & patch.keys()
        }
        # Measurement reminders follow the end date of the step they wait for.
        moved_steps = {result.final[i].step_id for i in changed_dates}
        for snap in final:
            if snap.measurement.after_step_id in moved_steps:
                changed_dates.add(snap.id)

        urgent = [a for a in result.alerts if a.alert_type in CASCADE_ALERT_TYPES]
        result.alerts = []
        result.alert_item_ids |= changed_dates
        for snap in final:
            if snap.id in result.alert_item_ids:
                result.alerts.extend(self._standard_alerts(snap, by_step))
        result.alerts.extend(urgent)
        return result

    # ── operations ───────────────────────────────────────────────────────

    def regenerate_alerts_for(self, items: Iterable[StepSnapshot], item_ids: Iterable[int],
                              base: RecalcResult | None = None) -> RecalcResult:
        """Rebuild the standard alerts of ``item_ids`` without moving any date.

        With ``base``, the ids are added to an existing result and its
        cascade alerts are kept.
        """
        ordered = self.sort(items)
        result = base or RecalcResult()
        result.alert_item_ids |= set(item_ids)
        return self._finish(ordered, result)

    def complete(
        self,
        items: Iterable[StepSnapshot],
        schedule_id,
        today: date,
        actual_days: int | None = None,
    ) -> RecalcResult:
        """Mark a step completed as of ``today`` and cascade.

        ``actual_days`` defaults to 1 (finished today). The realised window is
        ``[today - (actual_days - 1) business days, today]``.
        """
        if actual_days is not None and actual_days <= 0:
            raise InvalidDurationError(actual_days)
        used_days = actual_days or 1
        actual_start = sub_business_days(today, used_days - 1)
        return self.cascade_from_completed(
            items, schedule_id, actual_end=today, today=today,
            actual_days=used_days, actual_start=actual_start,
        )

    def cascade_from_completed(
        self,
        items: Iterable[StepSnapshot],
        schedule_id,
        actual_end: date,
        today: date,
        actual_days: int | None = None,
        actual_start: date | None = None,
        extra_fields: Mapping | None = None,
    ) -> RecalcResult:
        """Record a completion and re-derive every later non-completed step.

        days_ahead compares the planned end with the realised end in business
        days (positive = early). Without a planned end it falls back to
        ``estimated_days - realised duration``.
        """
        ordered = self.sort(items)
        index = self._find(ordered, schedule_id)
        target = ordered[index]

        result = RecalcResult()
        if target.end_date:
            result.days_ahead = business_day_diff(target.end_date, actual_end)
        elif target.start_date:
            real = actual_days or business_day_diff(actual_end, target.start_date) + 1
            result.days_ahead = target.estimated_days - real

        used_days = clamp_duration(actual_days or target.actual_days or target.estimated_days)
        start = actual_start or target.start_date or sub_business_days(actual_end, used_days - 1)
        if start > actual_end:
            start = sub_business_days(actual_end, used_days - 1)

        result.stage(target, **{
            **dict(extra_fields or {}),
            "status": COMPLETED,
            "start_date": start,
            "end_date": actual_end,
            "actual_days": used_days,
        })

        end_dates = {
            s.step_id: s.end_date
            for s in ordered[:index]
            if s.end_date
        }
        end_dates[target.step_id] = actual_end
        for s in ordered[index + 1:]:
            if s.is_completed and s.end_date:
                end_dates[s.step_id] = s.end_date

        cursor = add_business_days(actual_end, 1)
        self._walk(ordered[index + 1:], cursor, end_dates, result, today, urgency=True)

        logger.info(
            "Cascade from %s: days_ahead=%d, %d row(s) changed",
            target.step_id, result.days_ahead, result.touched,
            extra={"schedule_id": target.id, "step_id": target.step_id},
        )
        return self._finish(ordered, result)

    def _anchor(self, ordered: list[StepSnapshot], index: int, today: date) -> tuple[int, date, dict]:
        """Where a restoration walk starts: (first index to walk, cursor, end dates).

        Nearest completed step before ``index`` → walk right after it.
        None → walk from rank 0, starting at the earliest known start date.
        """
        end_dates: dict[str, date] = {}
        for back in range(index - 1, -1, -1):
            snap = ordered[back]
            if snap.is_completed and snap.end_date:
                for earlier in ordered[:back + 1]:
                    if earlier.end_date:
                        end_dates[earlier.step_id] = earlier.end_date
                return back + 1, add_business_days(snap.end_date, 1), end_dates

        starts = [s.start_date for s in ordered if s.start_date]
        first = min(starts) if starts else today
        return 0, next_business_day(first), end_dates

    def uncomplete(self, items: Iterable[StepSnapshot], schedule_id, today: date,
                   extra_fields: Mapping | None = None) -> RecalcResult:
        """Revert a step to pending and restore the estimated plan from it onward."""
        ordered = self.sort(items)
        index = self._find(ordered, schedule_id)
        target = ordered[index]

        result = RecalcResult()
        result.stage(target, **{**dict(extra_fields or {}), "status": PENDING, "actual_days": None})

        first, cursor, end_dates = self._anchor(ordered, index, today)
        self._walk(
            ordered[first:], cursor, end_dates, result, today,
            planned_only=True, keep_status=frozenset({target.id}),
        )
        logger.info(
            "Restored plan from %s: %d row(s) changed", target.step_id, result.touched,
            extra={"schedule_id": target.id, "step_id": target.step_id},
        )
        return self._finish(ordered, result)

    def apply_edit(self, items: Iterable[StepSnapshot], schedule_id, fields: Mapping,
                   today: date) -> RecalcResult:
        """Apply a manual edit to one step, then cascade every later step.

        ``fields`` holds already-parsed column values. Status changes route to
        the completion or restoration paths; otherwise the step's own end date
        is recomputed from its (possibly new) start and duration.
        """
        ordered = self.sort(items)
        index = self._find(ordered, schedule_id)
        target = ordered[index]
        fields = dict(fields)

        for key in ("estimated_days", "actual_days"):
            if key in fields and fields[key] is not None and int(fields[key]) <= 0:
                raise InvalidDurationError(fields[key], field=key)

        new_status = fields.pop("status", target.status)
        new_start = fields.pop("start_date", target.start_date)
        new_end = fields.pop("end_date", target.end_date)

        if new_status == COMPLETED and not target.is_completed:
            end = new_end if new_end and new_end != target.end_date else today
            used = clamp_duration(fields.get("actual_days") or target.actual_days or target.estimated_days)
            fields.pop("actual_days", None)
            start = new_start if new_start and new_start != target.start_date \
                else sub_business_days(end, used - 1)
            if end < start:
                raise IntegrityViolationError(
                    f"{target.step_id}: end_date {to_iso(end)} is before start_date {to_iso(start)}"
                )
            return self.cascade_from_completed(
                ordered, schedule_id, actual_end=end, today=today,
                actual_days=used, actual_start=start, extra_fields=fields,
            )

        if new_status != COMPLETED and target.is_completed:
            return self.uncomplete(ordered, schedule_id, today, extra_fields=fields)

        result = RecalcResult()
        edited = result.stage(target, **fields) if fields else target
        if new_status != edited.status:
            edited = result.stage(edited, status=new_status)

        end_dates = {s.step_id: s.end_date for s in ordered[:index] if s.end_date}
        for s in ordered[index + 1:]:
            if s.is_completed and s.end_date:
                end_dates[s.step_id] = s.end_date

        # An open step never starts before the business day after its predecessors end.
        prior = [s.end_date for s in ordered[:index] if s.end_date]
        earliest = add_business_days(max(prior), 1) if prior else None
        if new_start is None:
            new_start = earliest or next_business_day(today)
        elif earliest and new_start < earliest and not edited.is_completed:
            new_start = earliest

        duration_changed = "estimated_days" in fields or "actual_days" in fields
        if new_end is not None and new_end != target.end_date and not duration_changed:
            # Explicit new end date: the duration follows from the window.
            if new_end < new_start:
                raise IntegrityViolationError(
                    f"{target.step_id}: end_date {to_iso(new_end)} is before start_date {to_iso(new_start)}"
                )
            span = business_day_diff(new_end, new_start) + 1
            key = "actual_days" if edited.is_completed else "estimated_days"
            edited = result.stage(edited, **{key: clamp_duration(span)})

        if not edited.is_completed:
            new_start = self._constrained_start(edited.step_id, next_business_day(new_start), end_dates)
            if edited.status == PENDING:
                edited = result.stage(edited, status=SCHEDULED)
        end = end_for_duration(new_start, edited.duration)
        edited = result.stage(edited, start_date=new_start, end_date=end)
        end_dates[edited.step_id] = end

        if target.end_date:
            result.days_ahead = business_day_diff(target.end_date, end)

        self._walk(
            ordered[index + 1:], add_business_days(end, 1), end_dates, result, today,
            urgency=True,
        )
        logger.info(
            "Edited %s: %d row(s) changed", target.step_id, result.touched,
            extra={"schedule_id": target.id, "step_id": target.step_id},
        )
        return self._finish(ordered, result)

    def regenerate(self, items: Iterable[StepSnapshot], today: date) -> RecalcResult:
        """Repair completed rows with missing or inverted dates, then re-chain the rest.

        Completed rows are anchored on their end date. Non-completed rows are
        chained from the earliest known start date (today when none is known).
        """
        ordered = self.sort(items)
        result = RecalcResult()

        for snap in ordered:
            if not snap.is_completed:
                continue
            duration = snap.duration
            if snap.start_date and not snap.end_date:
                result.stage(snap, end_date=end_for_duration(snap.start_date, duration))
            elif snap.end_date and not snap.start_date:
                result.stage(snap, start_date=sub_business_days(snap.end_date, duration - 1))
            elif snap.start_date and snap.end_date and snap.end_date < snap.start_date:
                result.stage(snap, start_date=sub_business_days(snap.end_date, duration - 1))

        repaired = [result.final.get(s.id, s) for s in ordered]
        starts = [s.start_date for s in repaired if s.start_date]
        cursor = next_business_day(min(starts)) if starts else next_business_day(today)
        self._walk(repaired, cursor, {}, result, today)
        return self._finish(ordered, result)

    def plan_from(self, items: Iterable[StepSnapshot], first_step_id: str | None,
                  start: date, today: date) -> RecalcResult:
        """Chain every step from ``first_step_id`` onward starting on ``start``.

        Steps ranked before ``first_step_id`` keep their dates but still feed
        delay rules.
        """
        ordered = self.sort(items)
        first_rank = self.order.rank(first_step_id) if first_step_id else 0
        before = [s for s in ordered if self.order.rank(s.step_id) < first_rank]
        walked = [s for s in ordered if self.order.rank(s.step_id) >= first_rank]

        end_dates = {s.step_id: s.end_date for s in before if s.end_date}
        result = RecalcResult()
        self._walk(walked, next_business_day(start), end_dates, result, today, planned_only=True)
        return self._finish(ordered, result)
