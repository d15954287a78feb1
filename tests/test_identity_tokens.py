from __future__ import annotations

from dataclasses import dataclass, field
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest
from fastapi import HTTPException

from app.core.enums import RoleEnum
from app.core.security import create_access_token
from app.modules.identity.service import IdentityService, require_roles
from app.shared.exceptions import UnauthorizedException


@dataclass
class FakeUser:
    id: UUID
    role: SimpleNamespace
    is_active: bool = True


@dataclass
class FakeIdentityRepository:
    users: dict[UUID, FakeUser] = field(default_factory=dict)
    roles: list[RoleEnum] = field(default_factory=list)

    async def get_user_by_id(self, user_id: UUID) -> FakeUser | None:
        return self.users.get(user_id)

    async def get_role_by_name(self, role_name: RoleEnum):
        return role_name if role_name in self.roles else None

    async def create_role(self, role_name: RoleEnum):
        self.roles.append(role_name)
        return role_name


def make_user(role: RoleEnum = RoleEnum.STUDENT, *, is_active: bool = True) -> FakeUser:
    return FakeUser(id=uuid4(), role=SimpleNamespace(name=role), is_active=is_active)


@pytest.mark.asyncio
async def test_access_token_resolves_user() -> None:
    user = make_user(RoleEnum.TUTOR)
    service = IdentityService(FakeIdentityRepository(users={user.id: user}))  # type: ignore[arg-type]

    resolved = await service.get_user_from_access_token(create_access_token(subject=str(user.id)))

    assert resolved is user


@pytest.mark.asyncio
async def test_token_of_wrong_type_is_rejected() -> None:
    user = make_user()
    service = IdentityService(FakeIdentityRepository(users={user.id: user}))  # type: ignore[arg-type]

    with pytest.raises(UnauthorizedException):
        await service.get_user_from_access_token(create_access_token(subject=str(user.id), type="refresh"))


@pytest.mark.asyncio
async def test_malformed_subject_is_rejected() -> None:
    service = IdentityService(FakeIdentityRepository())  # type: ignore[arg-type]

    with pytest.raises(UnauthorizedException):
        await service.get_user_from_access_token(create_access_token(subject="not-a-uuid"))


@pytest.mark.asyncio
async def test_inactive_user_is_rejected() -> None:
    user = make_user(is_active=False)
    service = IdentityService(FakeIdentityRepository(users={user.id: user}))  # type: ignore[arg-type]

    with pytest.raises(UnauthorizedException):
        await service.get_user_from_access_token(create_access_token(subject=str(user.id)))


@pytest.mark.asyncio
async def test_tampered_token_is_unauthorized() -> None:
    service = IdentityService(FakeIdentityRepository())  # type: ignore[arg-type]
    header, body, _ = create_access_token(subject=str(uuid4())).split(".")

    with pytest.raises(HTTPException) as exc:
        await service.get_user_from_access_token(f"{header}.{body}.{'A' * 43}")
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_default_roles_are_created_once() -> None:
    repository = FakeIdentityRepository()
    service = IdentityService(repository)  # type: ignore[arg-type]

    await service.ensure_default_roles()
    await service.ensure_default_roles()

    assert repository.roles == [RoleEnum.STUDENT, RoleEnum.TUTOR, RoleEnum.ADMIN]


@pytest.mark.asyncio
async def test_require_roles_rejects_other_roles() -> None:
    checker = require_roles(RoleEnum.TUTOR, RoleEnum.ADMIN)
    tutor = make_user(RoleEnum.TUTOR)

    assert await checker(current_user=tutor) is tutor
    with pytest.raises(HTTPException) as exc:
        await checker(current_user=make_user(RoleEnum.STUDENT))
    assert exc.value.status_code == 403
