"""Scoped edits and deletions of schedulable rows.

Edits and deletions of a recurring instance take a scope:

- ``single``: only the targeted row;
- ``future``: the targeted row and every later instance of its series;
- ``all``: the whole series, whichever instance was targeted.

Callers own the transaction; nothing here commits.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Type

from sqlmodel.ext.asyncio.session import AsyncSession

from .recurrence import ends_before, next_pattern_start, parse_rule, reschedule, same_rule
from .series import (
    Schedulable,
    SeriesError,
    delete_instances,
    in_series,
    is_master,
    load_children,
    load_master,
    promote_earliest,
)

logger = logging.getLogger(__name__)

TIMING_FIELDS = ('start_date', 'end_date')


class EditScope(str, Enum):
    SINGLE = 'single'
    FUTURE = 'future'
    ALL = 'all'


class DeleteScope(str, Enum):
    SINGLE = 'single'
    FUTURE = 'future'
    ALL = 'all'


def _apply(row: Schedulable, values: Dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(row, key, value)


def _shared(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Changes copied verbatim onto sibling instances."""
    return {k: v for k, v in changes.items() if k not in TIMING_FIELDS and k != 'recurring_rule'}


def _own(changes: Dict[str, Any]) -> Dict[str, Any]:
    # an empty rule in an edit body means "leave the rule alone"
    return {k: v for k, v in changes.items() if not (k == 'recurring_rule' and not v)}


def _detach(row: Schedulable) -> None:
    row.is_recurring = False
    row.recurring_rule = None
    row.recurring_parent_id = None


async def update_single(sess: AsyncSession, model: Type[Schedulable], target: Schedulable,
                        changes: Dict[str, Any]) -> Schedulable:
    """Detach the target from its series and edit it alone."""
    if is_master(target):
        children = await load_children(sess, model, target.id)
        await promote_earliest(sess, children, target.recurring_rule)
    _apply(target, {k: v for k, v in changes.items() if k != 'recurring_rule'})
    _detach(target)
    sess.add(target)
    logger.info('detached %s %s from its series', model.__name__, target.id)
    return target


async def _update_from(sess: AsyncSession, model: Type[Schedulable], anchor: Schedulable,
                       followers: List[Schedulable], changes: Dict[str, Any],
                       original_start: datetime, original_end: datetime) -> None:
    """Apply changes to an anchor row and carry them over to its followers.

    A changed rule re-dates the followers from the anchor's new slot; rows
    the new rule no longer reaches (UNTIL) are deleted. A rule whose UNTIL
    is before the anchor itself is rejected. Otherwise the
    followers move by the anchor's start and end deltas.
    """
    new_rule = changes.get('recurring_rule')
    rule_changed = bool(new_rule) and not same_rule(new_rule, anchor.recurring_rule)
    _apply(anchor, _own(changes))
    shared = _shared(changes)

    if rule_changed:
        rule = parse_rule(anchor.recurring_rule)
        anchor.start_date, anchor.end_date = next_pattern_start(anchor.start_date, anchor.end_date, rule)
        if ends_before(anchor.start_date, rule):
            raise SeriesError(f'rule {anchor.recurring_rule} ends before the edited instance')
        slots = reschedule(anchor.start_date, anchor.end_date, rule, len(followers))
        for row, (start, end) in zip(followers, slots):
            _apply(row, shared)
            row.start_date = start
            row.end_date = end
            row.recurring_rule = anchor.recurring_rule
            sess.add(row)
        surplus = followers[len(slots):]
        if surplus:
            logger.info('rule %s ends before %d instance(s) of %s series', anchor.recurring_rule,
                        len(surplus), model.__name__)
            await delete_instances(sess, model, surplus)
    else:
        start_delta = anchor.start_date - original_start
        end_delta = anchor.end_date - original_end
        for row in followers:
            _apply(row, shared)
            row.start_date = row.start_date + start_delta
            row.end_date = row.end_date + end_delta
            row.recurring_rule = anchor.recurring_rule
            sess.add(row)
    sess.add(anchor)


async def update_future(sess: AsyncSession, model: Type[Schedulable], target: Schedulable,
                        changes: Dict[str, Any]) -> Schedulable:
    """Edit the target and every instance of its series that starts after it."""
    original_start, original_end = target.start_date, target.end_date
    if is_master(target):
        followers = await load_children(sess, model, target.id, after=original_start)
    else:
        parent = await load_master(sess, model, target)
        followers = [r for r in await load_children(sess, model, parent.id, after=original_start)
                     if r.id != target.id]
        new_rule = changes.get('recurring_rule')
        if new_rule and parent.start_date > original_start and not same_rule(new_rule, parent.recurring_rule):
            parent.recurring_rule = new_rule
            sess.add(parent)
    await _update_from(sess, model, target, followers, changes, original_start, original_end)
    return target


async def update_all(sess: AsyncSession, model: Type[Schedulable], target: Schedulable,
                     changes: Dict[str, Any]) -> Schedulable:
    """Edit the whole series.

    A timing change on the target is translated into the same start and
    end deltas on the master, then every child follows the master.
    """
    master = await load_master(sess, model, target)
    master_changes = dict(changes)
    if any(k in changes for k in TIMING_FIELDS):
        start_delta = changes.get('start_date', target.start_date) - target.start_date
        end_delta = changes.get('end_date', target.end_date) - target.end_date
        master_changes['start_date'] = master.start_date + start_delta
        master_changes['end_date'] = master.end_date + end_delta
    children = await load_children(sess, model, master.id)
    await _update_from(sess, model, master, children, master_changes, master.start_date, master.end_date)
    return target


async def update_instance(sess: AsyncSession, model: Type[Schedulable], target: Schedulable,
                          changes: Dict[str, Any], scope: EditScope = EditScope.SINGLE) -> Schedulable:
    if not in_series(target):
        if changes.get('recurring_rule'):
            raise SeriesError('a standalone entry cannot be turned into a series; create a new series instead')
        _apply(target, {k: v for k, v in changes.items() if k != 'recurring_rule'})
        sess.add(target)
        return target
    if scope == EditScope.FUTURE:
        return await update_future(sess, model, target, changes)
    if scope == EditScope.ALL:
        return await update_all(sess, model, target, changes)
    return await update_single(sess, model, target, changes)


async def delete_single(sess: AsyncSession, model: Type[Schedulable], target: Schedulable) -> int:
    if in_series(target) and is_master(target):
        children = await load_children(sess, model, target.id)
        await promote_earliest(sess, children, target.recurring_rule)
    return await delete_instances(sess, model, [target])


async def delete_future(sess: AsyncSession, model: Type[Schedulable], target: Schedulable) -> int:
    """Delete the target and the instances of its series at or after its start.

    From the master, earlier children survive under the earliest of them.
    From a child, the master and earlier siblings are left alone.
    """
    cutover = target.start_date
    master = await load_master(sess, model, target)
    children = await load_children(sess, model, master.id)
    doomed = [r for r in children if r.start_date >= cutover and r.id != target.id]
    doomed.append(target)
    if is_master(target):
        survivors = [r for r in children if r.start_date < cutover]
        await promote_earliest(sess, survivors, target.recurring_rule)
    return await delete_instances(sess, model, doomed)


async def delete_all(sess: AsyncSession, model: Type[Schedulable], target: Schedulable) -> int:
    master = await load_master(sess, model, target)
    children = await load_children(sess, model, master.id)
    return await delete_instances(sess, model, [master] + children)


async def delete_instance(sess: AsyncSession, model: Type[Schedulable], target: Schedulable,
                          scope: DeleteScope = DeleteScope.SINGLE) -> int:
    """Delete according to scope and return the number of rows removed."""
    if not in_series(target):
        return await delete_instances(sess, model, [target])
    if scope == DeleteScope.FUTURE:
        return await delete_future(sess, model, target)
    if scope == DeleteScope.ALL:
        return await delete_all(sess, model, target)
    return await delete_single(sess, model, target)
