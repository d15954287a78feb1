"""Audit business logic layer."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db_session
from app.core.enums import OutboxStatusEnum, RoleEnum
from app.modules.audit.models import AuditLog, OutboxEvent
from app.modules.audit.repository import AuditRepository
from app.modules.identity.models import User
from app.shared.exceptions import UnauthorizedException


class AuditService:
    """Admin read access to the audit trail and outbox."""

    def __init__(self, repository: AuditRepository) -> None:
        self.repository = repository

    @staticmethod
    def _ensure_admin(actor: User) -> None:
        if actor.role.name != RoleEnum.ADMIN:
            raise UnauthorizedException("Only admin can view audit data")

    async def list_logs(
        self,
        actor: User,
        limit: int,
        offset: int,
        action: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> tuple[list[AuditLog], int]:
        """List audit logs, e.g. ``billing.payment.unallocated`` or one booking's history."""
        self._ensure_admin(actor)
        return await self.repository.list_audit_logs(
            limit=limit,
            offset=offset,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
        )

    async def list_outbox(self, actor: User, status: OutboxStatusEnum, limit: int) -> list[OutboxEvent]:
        self._ensure_admin(actor)
        return await self.repository.list_outbox(status, limit)


async def get_audit_service(session: AsyncSession = Depends(get_db_session)) -> AuditService:
    """Dependency provider for audit service."""
    return AuditService(AuditRepository(session))
