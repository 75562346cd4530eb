"""Link rows attached to freshly created instances.

Appointments get the default billing/documentation tags, plus "New Client"
on the first appointment ever booked for a client group. Availability
blocks get the services they can be booked for. Failures here are logged
and never undo the rows that were already created.
"""
import logging
from typing import List, Optional, Sequence

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from . import config
from .models import (
    Appointment,
    AppointmentTag,
    Availability,
    AvailabilityService,
    ClinicianService,
    PracticeService,
    Tag,
)

logger = logging.getLogger(__name__)


async def _tags_by_name(sess: AsyncSession, names: Sequence[str]) -> dict:
    res = await sess.exec(select(Tag).where(Tag.name.in_(list(names))))
    return {t.name: t for t in res.all()}


async def is_first_for_group(sess: AsyncSession, client_group_id: Optional[int],
                             exclude_ids: Sequence[int] = ()) -> bool:
    """True when the group has no appointments besides ``exclude_ids``."""
    if client_group_id is None:
        return False
    q = select(func.count(Appointment.id)).where(Appointment.client_group_id == client_group_id)
    if exclude_ids:
        q = q.where(Appointment.id.not_in(list(exclude_ids)))
    res = await sess.exec(q)
    return res.one() == 0


async def add_default_appointment_tags(sess: AsyncSession, appointments: Sequence[Appointment],
                                       first: Optional[Appointment] = None) -> List[AppointmentTag]:
    """Tag every appointment as unpaid and missing a note.

    ``first`` (default: the first of ``appointments``) additionally gets the
    new-client tag when no other appointment exists for its client group.
    The check and the insert are not atomic; two concurrent first bookings
    for one group can both be tagged.
    """
    if not appointments:
        return []
    if first is None:
        first = appointments[0]
    links: List[AppointmentTag] = []
    try:
        async with sess.begin_nested():
            tags = await _tags_by_name(sess, [config.TAG_APPOINTMENT_UNPAID, config.TAG_NO_NOTE,
                                              config.TAG_NEW_CLIENT])
            for name in (config.TAG_APPOINTMENT_UNPAID, config.TAG_NO_NOTE):
                tag = tags.get(name)
                if tag is None:
                    logger.warning('default tag %r is missing; not attached', name)
                    continue
                links.extend(AppointmentTag(appointment_id=a.id, tag_id=tag.id) for a in appointments)
            new_client = tags.get(config.TAG_NEW_CLIENT)
            if new_client is not None and await is_first_for_group(
                    sess, first.client_group_id, [a.id for a in appointments]):
                links.append(AppointmentTag(appointment_id=first.id, tag_id=new_client.id))
            sess.add_all(links)
    except SQLAlchemyError:
        logger.exception('failed to attach default tags to %d appointment(s)', len(appointments))
        return []
    return links


async def online_service_ids(sess: AsyncSession, clinician_id: int) -> List[int]:
    """Active, online-bookable services offered by a clinician."""
    q = (
        select(ClinicianService.service_id)
        .join(PracticeService, PracticeService.id == ClinicianService.service_id)
        .where(ClinicianService.clinician_id == clinician_id)
        .where(ClinicianService.is_active == True)  # noqa: E712
        .where(PracticeService.allow_online_booking == True)  # noqa: E712
        .order_by(ClinicianService.service_id)
    )
    res = await sess.exec(q)
    return list(res.all())


async def attach_availability_services(sess: AsyncSession, blocks: Sequence[Availability],
                                       service_ids: Optional[Sequence[int]] = None) -> List[AvailabilityService]:
    """Associate services with every block.

    Explicit ``service_ids`` win; otherwise each block inherits its
    clinician's online-bookable services.
    """
    if not blocks:
        return []
    links: List[AvailabilityService] = []
    try:
        async with sess.begin_nested():
            cache = {}
            for block in blocks:
                if service_ids is not None:
                    ids = list(dict.fromkeys(service_ids))
                else:
                    if block.clinician_id not in cache:
                        cache[block.clinician_id] = await online_service_ids(sess, block.clinician_id)
                    ids = cache[block.clinician_id]
                links.extend(AvailabilityService(availability_id=block.id, service_id=sid) for sid in ids)
            sess.add_all(links)
    except SQLAlchemyError:
        logger.exception('failed to attach services to %d availability block(s)', len(blocks))
        return []
    return links
