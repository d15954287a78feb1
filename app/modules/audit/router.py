"""Audit API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.core.enums import OutboxStatusEnum
from app.modules.audit.schemas import AuditLogRead, OutboxEventRead
from app.modules.audit.service import AuditService, get_audit_service
from app.modules.identity.service import get_current_user
from app.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/logs", response_model=Page[AuditLogRead])
async def list_logs(
    action: str | None = Query(default=None, max_length=128),
    entity_type: str | None = Query(default=None, max_length=64),
    entity_id: str | None = Query(default=None, max_length=255),
    pagination=Depends(get_pagination_params),
    service: AuditService = Depends(get_audit_service),
    current_user=Depends(get_current_user),
) -> Page[AuditLogRead]:
    """List audit logs."""
    items, total = await service.list_logs(
        current_user,
        pagination.limit,
        pagination.offset,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
    )
    serialized = [AuditLogRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.get("/outbox/pending", response_model=list[OutboxEventRead])
async def list_pending_outbox(
    limit: int = Query(default=100, ge=1, le=500),
    service: AuditService = Depends(get_audit_service),
    current_user=Depends(get_current_user),
) -> list[OutboxEventRead]:
    """Events still waiting for the notifications worker."""
    items = await service.list_outbox(current_user, OutboxStatusEnum.PENDING, limit=limit)
    return [OutboxEventRead.model_validate(item) for item in items]


@router.get("/outbox/failed", response_model=list[OutboxEventRead])
async def list_failed_outbox(
    limit: int = Query(default=100, ge=1, le=500),
    service: AuditService = Depends(get_audit_service),
    current_user=Depends(get_current_user),
) -> list[OutboxEventRead]:
    """Events that used up their attempts, with the last error."""
    items = await service.list_outbox(current_user, OutboxStatusEnum.FAILED, limit=limit)
    return [OutboxEventRead.model_validate(item) for item in items]
