"""Series persistence: materializing a rule into rows and the topology
helpers (master lookup, child loading, promotion, cascading deletes) that
the scoped mutations build on.

A series is one master row (``recurring_parent_id`` null, rule set) plus
children that point at the master by id. Appointments and availability
blocks share this shape, so every helper takes the model class.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Type, Union

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import delete as sqlalchemy_delete
from sqlalchemy.exc import SQLAlchemyError

from .models import Appointment, AppointmentTag, Availability, AvailabilityService
from .recurrence import generate_occurrences, matches_pattern, parse_rule

logger = logging.getLogger(__name__)

Schedulable = Union[Appointment, Availability]

# Link rows removed together with an instance: (link model, column holding the instance id)
DEPENDENT_LINKS = {
    Appointment: ((AppointmentTag, 'appointment_id'),),
    Availability: ((AvailabilityService, 'availability_id'),),
}

# Columns the series machinery owns; never copied from request values.
SERIES_FIELDS = ('id', 'start_date', 'end_date', 'is_recurring', 'recurring_rule',
                 'recurring_parent_id', 'created_at')


class SeriesError(Exception):
    pass


class InstanceNotFound(SeriesError):
    pass


@dataclass
class SeriesResult:
    master: Schedulable
    # rows the caller should present; excludes an off-pattern master
    instances: List[Schedulable]
    # every persisted row, master first
    created: List[Schedulable]


def is_master(row: Schedulable) -> bool:
    return row.recurring_parent_id is None


def in_series(row: Schedulable) -> bool:
    return bool(row.is_recurring) or row.recurring_parent_id is not None


async def load_master(sess: AsyncSession, model: Type[Schedulable], row: Schedulable) -> Schedulable:
    if row.recurring_parent_id is None:
        return row
    master = await sess.get(model, row.recurring_parent_id)
    if master is None:
        raise InstanceNotFound(f"series master {row.recurring_parent_id} not found")
    return master


async def load_children(sess: AsyncSession, model: Type[Schedulable], master_id: int,
                        after: Optional[datetime] = None) -> List[Schedulable]:
    """Children of a master ordered by start; ``after`` keeps those starting strictly later."""
    q = select(model).where(model.recurring_parent_id == master_id)
    if after is not None:
        q = q.where(model.start_date > after)
    q = q.order_by(model.start_date, model.id)
    res = await sess.exec(q)
    return list(res.all())


async def promote_earliest(sess: AsyncSession, children: Sequence[Schedulable],
                           rule_string: Optional[str]) -> Optional[Schedulable]:
    """Make the earliest child the master of the remaining children."""
    if not children:
        return None
    heir = min(children, key=lambda r: (r.start_date, r.id))
    heir.recurring_parent_id = None
    heir.is_recurring = True
    heir.recurring_rule = rule_string
    sess.add(heir)
    for row in children:
        if row.id == heir.id:
            continue
        row.recurring_parent_id = heir.id
        sess.add(row)
    logger.info('promoted %s %s to series master over %d instance(s)',
                type(heir).__name__, heir.id, len(children) - 1)
    return heir


async def delete_instances(sess: AsyncSession, model: Type[Schedulable], rows: Sequence[Schedulable]) -> int:
    """Delete rows and their link rows. Pending changes are flushed first."""
    ids = [r.id for r in rows]
    if not ids:
        return 0
    for link_model, column in DEPENDENT_LINKS.get(model, ()):
        await sess.exec(sqlalchemy_delete(link_model).where(getattr(link_model, column).in_(ids)))
    await sess.exec(sqlalchemy_delete(model).where(model.id.in_(ids)))
    logger.info('deleted %d %s row(s): %s', len(ids), model.__name__, ids)
    return len(ids)


def _copyable(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if k not in SERIES_FIELDS}


async def materialize_series(sess: AsyncSession, model: Type[Schedulable], values: Dict[str, Any],
                             start: datetime, end: datetime, rule_string: str) -> SeriesResult:
    """Persist a master row and one child per generated occurrence.

    Each child is written in its own SAVEPOINT; a child that fails to
    insert is logged and skipped so the rest of the series still lands.
    When a weekly BYDAY rule excludes the origin's weekday the master is
    stored but left out of ``instances``.
    """
    rule = parse_rule(rule_string)
    occurrences = generate_occurrences(start, end, rule)
    fields = _copyable(values)

    master = model(**fields, start_date=start, end_date=end,
                   is_recurring=True, recurring_rule=rule_string, recurring_parent_id=None)
    sess.add(master)
    await sess.flush()

    created: List[Schedulable] = [master]
    for child_start, child_end in occurrences[1:]:
        child = model(**fields, start_date=child_start, end_date=child_end,
                      is_recurring=True, recurring_rule=rule_string, recurring_parent_id=master.id)
        try:
            async with sess.begin_nested():
                sess.add(child)
        except SQLAlchemyError:
            logger.exception('skipping %s occurrence at %s in series %s',
                             model.__name__, child_start, master.id)
            continue
        created.append(child)

    visible = created if matches_pattern(start, rule) else created[1:]
    logger.info('created %s series %s: %d row(s), %d visible (rule %s)',
                model.__name__, master.id, len(created), len(visible), rule_string)
    return SeriesResult(master=master, instances=visible, created=created)


async def create_instance(sess: AsyncSession, model: Type[Schedulable], values: Dict[str, Any],
                          start: datetime, end: datetime, rule_string: Optional[str] = None) -> SeriesResult:
    """Create a standalone row, or a whole series when a rule is given."""
    if rule_string:
        return await materialize_series(sess, model, values, start, end, rule_string)
    row = model(**_copyable(values), start_date=start, end_date=end,
                is_recurring=False, recurring_rule=None, recurring_parent_id=None)
    sess.add(row)
    await sess.flush()
    return SeriesResult(master=row, instances=[row], created=[row])
