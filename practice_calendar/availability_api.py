import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from sqlmodel import select

from .db import async_session
from .models import Availability, AvailabilityService, Clinician, PracticeService
from .mutations import DeleteScope, EditScope, delete_instance, update_instance
from .schemas import AvailabilityCreate, AvailabilityUpdate
from .series import InstanceNotFound, SeriesError, SeriesResult, create_instance
from .side_effects import attach_availability_services
from .utils import format_utc, to_naive_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/availabilities', tags=['availability'])


def _serialize_availability(a: Availability) -> dict:
    return {
        "id": a.id,
        "clinician_id": a.clinician_id,
        "location_id": a.location_id,
        "title": a.title,
        "allow_online_requests": a.allow_online_requests,
        "start_date": format_utc(a.start_date),
        "end_date": format_utc(a.end_date),
        "created_at": format_utc(a.created_at),
        "is_recurring": a.is_recurring,
        "recurring_rule": a.recurring_rule,
        "recurring_parent_id": a.recurring_parent_id,
    }


def _created_response(result: SeriesResult):
    if len(result.instances) == 1:
        return _serialize_availability(result.instances[0])
    return {
        "count": len(result.instances),
        "message": f"created {len(result.instances)} recurring availability blocks",
        "availabilities": [_serialize_availability(a) for a in result.instances],
    }


@router.get('')
async def list_availabilities(
    clinician_id: Optional[int] = Query(None, alias='clinicianId'),
    start_date: Optional[datetime] = Query(None, alias='startDate'),
    end_date: Optional[datetime] = Query(None, alias='endDate'),
):
    q = select(Availability)
    if clinician_id is not None:
        q = q.where(Availability.clinician_id == clinician_id)
    if start_date is not None:
        q = q.where(Availability.start_date >= to_naive_utc(start_date))
    if end_date is not None:
        q = q.where(Availability.end_date <= to_naive_utc(end_date))
    q = q.order_by(Availability.start_date, Availability.id)
    async with async_session() as sess:
        blocks = (await sess.exec(q)).all()
    return [_serialize_availability(a) for a in blocks]


@router.get('/{availability_id}')
async def get_availability(availability_id: int):
    async with async_session() as sess:
        block = await sess.get(Availability, availability_id)
    if not block:
        raise HTTPException(status_code=404, detail="availability not found")
    return _serialize_availability(block)


@router.get('/{availability_id}/services')
async def get_availability_services(availability_id: int):
    async with async_session() as sess:
        block = await sess.get(Availability, availability_id)
        if not block:
            raise HTTPException(status_code=404, detail="availability not found")
        q = (
            select(PracticeService)
            .join(AvailabilityService, AvailabilityService.service_id == PracticeService.id)
            .where(AvailabilityService.availability_id == availability_id)
            .order_by(PracticeService.id)
        )
        services = (await sess.exec(q)).all()
    return [{"id": s.id, "code": s.code, "description": s.description, "rate": s.rate,
             "duration": s.duration} for s in services]


@router.post('', status_code=201)
async def create_availability(payload: AvailabilityCreate):
    async with async_session() as sess:
        clinician = await sess.get(Clinician, payload.clinician_id)
        if not clinician or not clinician.is_active:
            raise HTTPException(status_code=404, detail="active clinician not found")
        result = await create_instance(sess, Availability, payload.row_values(),
                                       payload.start_date, payload.end_date, payload.series_rule)
        await attach_availability_services(sess, result.created, payload.service_ids)
        await sess.commit()
    logger.info('created availability %s (%d instance(s))', result.master.id, len(result.created))
    return _created_response(result)


@router.put('/{availability_id}')
async def update_availability(availability_id: int, payload: AvailabilityUpdate,
                              edit_option: EditScope = Query(EditScope.SINGLE, alias='editOption')):
    changes = payload.changes()
    async with async_session() as sess:
        block = await sess.get(Availability, availability_id)
        if not block:
            raise HTTPException(status_code=404, detail="availability not found")
        start = changes.get('start_date', block.start_date)
        end = changes.get('end_date', block.end_date)
        if end <= start:
            raise HTTPException(status_code=400, detail="end_date must be after start_date")
        try:
            await update_instance(sess, Availability, block, changes, edit_option)
        except InstanceNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except SeriesError as e:
            raise HTTPException(status_code=400, detail=str(e))
        await sess.commit()
    logger.info('updated availability %s (editOption=%s)', availability_id, edit_option.value)
    return _serialize_availability(block)


@router.delete('/{availability_id}')
async def delete_availability(availability_id: int,
                              delete_option: DeleteScope = Query(DeleteScope.SINGLE, alias='deleteOption')):
    async with async_session() as sess:
        block = await sess.get(Availability, availability_id)
        if not block:
            raise HTTPException(status_code=404, detail="availability not found")
        try:
            deleted = await delete_instance(sess, Availability, block, delete_option)
        except InstanceNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        await sess.commit()
    logger.info('deleted %d availability row(s) from %s (deleteOption=%s)',
                deleted, availability_id, delete_option.value)
    return {"ok": True, "deleted": deleted}
