import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from sqlmodel import select
from sqlalchemy import func

from .db import async_session
from .models import Appointment, AppointmentLimit, AppointmentTag, ClientGroup, Clinician, Tag
from .mutations import DeleteScope, EditScope, delete_instance, update_instance
from .schemas import AppointmentCreate, AppointmentUpdate
from .series import InstanceNotFound, SeriesError, SeriesResult, create_instance
from .side_effects import add_default_appointment_tags
from .utils import format_utc, to_naive_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/appointments', tags=['appointments'])


def _serialize_appointment(a: Appointment, is_first: Optional[bool] = None,
                           tags: Optional[List[dict]] = None) -> dict:
    out = {
        "id": a.id,
        "type": a.type,
        "title": a.title,
        "is_all_day": a.is_all_day,
        "start_date": format_utc(a.start_date),
        "end_date": format_utc(a.end_date),
        "location_id": a.location_id,
        "clinician_id": a.clinician_id,
        "client_group_id": a.client_group_id,
        "service_id": a.service_id,
        "appointment_fee": a.appointment_fee,
        "status": a.status,
        "created_by": a.created_by,
        "created_at": format_utc(a.created_at),
        "is_recurring": a.is_recurring,
        "recurring_rule": a.recurring_rule,
        "recurring_parent_id": a.recurring_parent_id,
    }
    if is_first is not None:
        out["is_first_appointment_for_group"] = is_first
    if tags is not None:
        out["tags"] = tags
    return out


async def _group_counts(sess, group_ids) -> Dict[int, int]:
    group_ids = [g for g in set(group_ids) if g is not None]
    if not group_ids:
        return {}
    q = (
        select(Appointment.client_group_id, func.count(Appointment.id))
        .where(Appointment.client_group_id.in_(group_ids))
        .group_by(Appointment.client_group_id)
    )
    res = await sess.exec(q)
    return {gid: n for gid, n in res.all()}


async def _tags_for(sess, appointment_id: int) -> List[dict]:
    q = (
        select(Tag)
        .join(AppointmentTag, AppointmentTag.tag_id == Tag.id)
        .where(AppointmentTag.appointment_id == appointment_id)
        .order_by(Tag.name)
    )
    res = await sess.exec(q)
    return [{"id": t.id, "name": t.name, "color": t.color} for t in res.all()]


async def _check_daily_limit(sess, clinician_id: int, start: datetime) -> None:
    """Reject a booking when the clinician's day is already at its configured limit."""
    day = start.replace(hour=0, minute=0, second=0, microsecond=0)
    next_day = day + timedelta(days=1)
    q = (
        select(AppointmentLimit)
        .where(AppointmentLimit.clinician_id == clinician_id)
        .where(AppointmentLimit.date >= day)
        .where(AppointmentLimit.date < next_day)
    )
    limit = (await sess.exec(q)).first()
    if limit is None:
        return
    q = (
        select(func.count(Appointment.id))
        .where(Appointment.clinician_id == clinician_id)
        .where(Appointment.start_date >= day)
        .where(Appointment.start_date < next_day)
        .where(Appointment.status != 'CANCELLED')
    )
    booked = (await sess.exec(q)).one()
    if booked >= limit.max_limit:
        logger.info('appointment limit %d reached for clinician %s on %s', limit.max_limit, clinician_id, day.date())
        raise HTTPException(status_code=400, detail="appointment limit reached for this day")


def _created_response(result: SeriesResult):
    if len(result.instances) == 1:
        return _serialize_appointment(result.instances[0])
    return {
        "count": len(result.instances),
        "message": f"created {len(result.instances)} recurring appointments",
        "appointments": [_serialize_appointment(a) for a in result.instances],
    }


@router.get('')
async def list_appointments(
    clinician_id: Optional[int] = Query(None, alias='clinicianId'),
    client_group_id: Optional[int] = Query(None, alias='clientGroupId'),
    start_date: Optional[datetime] = Query(None, alias='startDate'),
    end_date: Optional[datetime] = Query(None, alias='endDate'),
):
    q = select(Appointment)
    if clinician_id is not None:
        q = q.where(Appointment.clinician_id == clinician_id)
    if client_group_id is not None:
        q = q.where(Appointment.client_group_id == client_group_id)
    if start_date is not None:
        q = q.where(Appointment.start_date >= to_naive_utc(start_date))
    if end_date is not None:
        q = q.where(Appointment.end_date <= to_naive_utc(end_date))
    q = q.order_by(Appointment.start_date, Appointment.id)
    async with async_session() as sess:
        appointments = (await sess.exec(q)).all()
        counts = await _group_counts(sess, [a.client_group_id for a in appointments])
    return [_serialize_appointment(a, is_first=counts.get(a.client_group_id) == 1)
            for a in appointments]


@router.get('/{appointment_id}')
async def get_appointment(appointment_id: int):
    async with async_session() as sess:
        appt = await sess.get(Appointment, appointment_id)
        if not appt:
            raise HTTPException(status_code=404, detail="appointment not found")
        counts = await _group_counts(sess, [appt.client_group_id])
        tags = await _tags_for(sess, appt.id)
    return _serialize_appointment(appt, is_first=counts.get(appt.client_group_id) == 1, tags=tags)


@router.get('/{appointment_id}/tags')
async def get_appointment_tags(appointment_id: int):
    async with async_session() as sess:
        appt = await sess.get(Appointment, appointment_id)
        if not appt:
            raise HTTPException(status_code=404, detail="appointment not found")
        return await _tags_for(sess, appt.id)


@router.post('', status_code=201)
async def create_appointment(payload: AppointmentCreate):
    async with async_session() as sess:
        if not await sess.get(Clinician, payload.clinician_id):
            raise HTTPException(status_code=404, detail="clinician not found")
        if payload.client_group_id is not None and not await sess.get(ClientGroup, payload.client_group_id):
            raise HTTPException(status_code=400, detail="client group not found")
        await _check_daily_limit(sess, payload.clinician_id, payload.start_date)
        result = await create_instance(sess, Appointment, payload.row_values(),
                                       payload.start_date, payload.end_date, payload.series_rule)
        first = result.instances[0] if result.instances else None
        await add_default_appointment_tags(sess, result.created, first=first)
        await sess.commit()
    logger.info('created appointment %s (%d instance(s))', result.master.id, len(result.created))
    return _created_response(result)


@router.put('/{appointment_id}')
async def update_appointment(appointment_id: int, payload: AppointmentUpdate,
                             edit_option: EditScope = Query(EditScope.SINGLE, alias='editOption')):
    changes = payload.changes()
    async with async_session() as sess:
        appt = await sess.get(Appointment, appointment_id)
        if not appt:
            raise HTTPException(status_code=404, detail="appointment not found")
        start = changes.get('start_date', appt.start_date)
        end = changes.get('end_date', appt.end_date)
        if end < start:
            raise HTTPException(status_code=400, detail="end_date must not be before start_date")
        if changes.get('client_group_id') is not None and not await sess.get(ClientGroup, changes['client_group_id']):
            raise HTTPException(status_code=400, detail="client group not found")
        try:
            await update_instance(sess, Appointment, appt, changes, edit_option)
        except InstanceNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except SeriesError as e:
            raise HTTPException(status_code=400, detail=str(e))
        await sess.commit()
    logger.info('updated appointment %s (editOption=%s)', appointment_id, edit_option.value)
    return _serialize_appointment(appt)


@router.delete('/{appointment_id}')
async def delete_appointment(appointment_id: int,
                             delete_option: DeleteScope = Query(DeleteScope.SINGLE, alias='deleteOption')):
    async with async_session() as sess:
        appt = await sess.get(Appointment, appointment_id)
        if not appt:
            raise HTTPException(status_code=404, detail="appointment not found")
        try:
            deleted = await delete_instance(sess, Appointment, appt, delete_option)
        except InstanceNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        await sess.commit()
    logger.info('deleted %d appointment row(s) from %s (deleteOption=%s)',
                deleted, appointment_id, delete_option.value)
    return {"ok": True, "deleted": deleted}


tags_router = APIRouter(prefix='/appointment-tags', tags=['appointments'])


@tags_router.get('')
async def list_tags():
    async with async_session() as sess:
        res = await sess.exec(select(Tag).order_by(Tag.name))
        return [{"id": t.id, "name": t.name, "color": t.color} for t in res.all()]
