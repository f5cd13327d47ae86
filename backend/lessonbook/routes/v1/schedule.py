# backend/lessonbook/routes/v1/schedule.py
"""
Slot template store routes - API v1 (staff)

Endpoints:
    GET /templates - List weekly templates
    POST /templates - Create a weekly template
    POST /templates/{template_id}/deactivate - Soft-deactivate a template
    POST /blocked - Block a full or partial day
    DELETE /blocked/{blocked_range_id} - Remove a block
    POST /extra - Add an extra window
    DELETE /extra/{extra_window_id} - Remove an extra window
"""

import logging
from typing import List

from fastapi import APIRouter, Body, Depends, Query, Response, status

from ...api.dependencies import get_schedule_service
from ...api.errors import handle_domain_exception
from ...core.exceptions import DomainException
from ...schemas.schedule import (
    BlockedRangeCreate,
    BlockedRangeResponse,
    ExtraWindowCreate,
    ExtraWindowResponse,
    SlotTemplateCreate,
    SlotTemplateResponse,
)
from ...services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["schedule-v1"])


@router.get("/templates", response_model=List[SlotTemplateResponse])
def list_templates(
    include_inactive: bool = Query(False),
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> List[SlotTemplateResponse]:
    templates = schedule_service.list_templates(include_inactive=include_inactive)
    return [SlotTemplateResponse.model_validate(t) for t in templates]


@router.post(
    "/templates", response_model=SlotTemplateResponse, status_code=status.HTTP_201_CREATED
)
def create_template(
    payload: SlotTemplateCreate = Body(...),
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> SlotTemplateResponse:
    try:
        template = schedule_service.create_template(
            payload.day_of_week,
            payload.start_time,
            payload.end_time,
            buffer_minutes=payload.buffer_minutes,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return SlotTemplateResponse.model_validate(template)


@router.post("/templates/{template_id}/deactivate", response_model=SlotTemplateResponse)
def deactivate_template(
    template_id: str,
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> SlotTemplateResponse:
    try:
        template = schedule_service.deactivate_template(template_id)
    except DomainException as e:
        handle_domain_exception(e)
    return SlotTemplateResponse.model_validate(template)


@router.post("/blocked", response_model=BlockedRangeResponse, status_code=status.HTTP_201_CREATED)
def add_blocked_range(
    payload: BlockedRangeCreate = Body(...),
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> BlockedRangeResponse:
    try:
        blocked = schedule_service.add_blocked_range(
            payload.date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            reason=payload.reason,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return BlockedRangeResponse.model_validate(blocked)


@router.delete("/blocked/{blocked_range_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_blocked_range(
    blocked_range_id: str,
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> Response:
    try:
        schedule_service.remove_blocked_range(blocked_range_id)
    except DomainException as e:
        handle_domain_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/extra", response_model=ExtraWindowResponse, status_code=status.HTTP_201_CREATED)
def add_extra_window(
    payload: ExtraWindowCreate = Body(...),
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> ExtraWindowResponse:
    try:
        extra = schedule_service.add_extra_window(
            payload.date,
            payload.start_time,
            payload.end_time,
            reason=payload.reason,
            reserved_for_identity=payload.reserved_for_identity,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return ExtraWindowResponse.model_validate(extra)


@router.delete("/extra/{extra_window_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_extra_window(
    extra_window_id: str,
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> Response:
    try:
        schedule_service.remove_extra_window(extra_window_id)
    except DomainException as e:
        handle_domain_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
