import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import Actor, get_current_actor, get_session, require_admin
from ..domain.errors import DomainError, InternalError
from ..domain.services import build_slot_query
from ..infrastructure.repositories import SqlAlchemySlotRepository
from ..schemas import SlotCreate, SlotDeleted, SlotPage, SlotRead, SlotUpdate
from ..usecases import slots as slot_usecase
from ..utils.audit_log import emit_audit_log
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/slots", tags=["slots"], dependencies=[Depends(get_current_actor)])


def _audit(**kwargs: Any) -> None:
    try:
        emit_audit_log(**kwargs)
    except RuntimeError as exc:
        logger.error("audit log failed for %s", kwargs.get("action"))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=InternalError("failed to record audit log").to_dict(),
        ) from exc


@router.post("", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    async with session.begin():
        try:
            slot = await slot_usecase.create_slot(
                slot_repo,
                owner_id=actor.user_id,
                starts_at=payload.starts_at,
                ends_at=payload.ends_at,
                capacity=payload.capacity,
                tags=payload.tags,
            )
        except DomainError as exc:
            raise http_error(exc) from exc
        result = SlotRead.from_db(slot=slot)
        _audit(action="slot.created", actor_id=actor.user_id, slot_id=result.slot_id, capacity=result.capacity)
    return result


@router.get("", response_model=SlotPage)
async def list_slots(
    page: int = Query(default=1),
    limit: Optional[int] = Query(default=None),
    from_: Optional[datetime] = Query(default=None, alias="from", description="ISO 8601 with timezone"),
    to: Optional[datetime] = Query(default=None, description="ISO 8601 with timezone"),
    tags: Optional[str] = Query(default=None, description="Comma separated; matches any"),
    available_only: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
) -> SlotPage:
    settings = get_settings()
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        query = build_slot_query(
            page=page,
            limit=limit if limit is not None else settings.default_page_limit,
            max_limit=settings.max_page_limit,
            starts_from=from_,
            ends_to=to,
            tags=tags,
            available_only=available_only,
        )
        slots, total = await slot_usecase.list_slots(slot_repo, query=query)
    except DomainError as exc:
        raise http_error(exc) from exc
    return SlotPage(
        items=[SlotRead.from_db(slot=slot) for slot in slots],
        page=query.page,
        limit=query.limit,
        total=total,
    )


@router.get("/{slot_id}", response_model=SlotRead)
async def get_slot(
    slot_id: str,
    session: AsyncSession = Depends(get_session),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        slot = await slot_usecase.get_slot(slot_repo, slot_id=slot_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return SlotRead.from_db(slot=slot)


@router.patch("/{slot_id}", response_model=SlotRead)
async def update_slot(
    slot_id: str,
    payload: SlotUpdate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    async with session.begin():
        try:
            slot = await slot_usecase.update_slot(
                slot_repo,
                slot_id=slot_id,
                owner_id=actor.user_id,
                starts_at=payload.starts_at,
                ends_at=payload.ends_at,
                capacity=payload.capacity,
                tags=payload.tags,
            )
        except DomainError as exc:
            raise http_error(exc) from exc
        result = SlotRead.from_db(slot=slot)
        _audit(
            action="slot.updated",
            actor_id=actor.user_id,
            slot_id=result.slot_id,
            booked_count=result.booked_count,
            capacity=result.capacity,
            extra={"fields": sorted(payload.model_dump(exclude_none=True))},
        )
    return result


@router.delete("/{slot_id}", response_model=SlotDeleted)
async def delete_slot(
    slot_id: str,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> SlotDeleted:
    slot_repo = SqlAlchemySlotRepository(session)
    async with session.begin():
        try:
            slot = await slot_usecase.delete_slot(slot_repo, slot_id=slot_id, owner_id=actor.user_id)
        except DomainError as exc:
            raise http_error(exc) from exc
        deleted_id = slot.id
        _audit(action="slot.deleted", actor_id=actor.user_id, slot_id=deleted_id)
    return SlotDeleted(slot_id=deleted_id)
