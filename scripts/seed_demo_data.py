"""Seed idempotent demo data for local/non-production environments."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, field
from datetime import date, time, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import SessionLocal, close_engine
from app.core.enums import RoleEnum, SessionModeEnum
from app.core.security import create_access_token
from app.modules.identity.models import User
from app.modules.identity.repository import IdentityRepository
from app.modules.identity.service import IdentityService
from app.modules.scheduling.models import AvailabilityWindow
from app.modules.scheduling.repository import SchedulingRepository
from app.modules.scheduling.schemas import WindowCreate
from app.modules.scheduling.service import SchedulingService
from app.shared.utils import utc_now

DEMO_ADMIN_EMAIL = "demo-admin@tutorbook.dev"
DEMO_TUTOR_EMAIL = "demo-tutor@tutorbook.dev"
DEMO_STUDENT_EMAIL = "demo-student@tutorbook.dev"

DEMO_WINDOW_DAY_OFFSETS = (1, 2, 3, 4, 5)
DEMO_WINDOWS = (
    (time(9, 0), time(12, 0), SessionModeEnum.ONLINE, None),
    (time(14, 0), time(16, 0), SessionModeEnum.IN_PERSON, "Library study room 2"),
)


@dataclass(slots=True)
class SeedStats:
    users_created: int = 0
    windows_created: int = 0
    tokens: dict[str, str] = field(default_factory=dict)


async def _ensure_user(
    session: AsyncSession,
    repository: IdentityRepository,
    *,
    email: str,
    full_name: str,
    role_name: RoleEnum,
) -> tuple[User, bool]:
    role = await repository.get_role_by_name(role_name)
    if role is None:
        raise RuntimeError(f"Role {role_name} was not found after ensure_default_roles")

    user = await repository.get_user_by_email(email)
    if user is not None:
        if user.role_id != role.id:
            user.role_id = role.id
        user.is_active = True
        await session.flush()
        await session.refresh(user, attribute_names=["role"])
        return user, False

    return await repository.create_user(email=email, full_name=full_name, role_id=role.id), True


async def _ensure_demo_windows(session: AsyncSession, *, tutor: User, today: date) -> int:
    scheduling_service = SchedulingService(SchedulingRepository(session))
    created = 0
    for day_offset in DEMO_WINDOW_DAY_OFFSETS:
        target_date = today + timedelta(days=day_offset)
        for start_time, end_time, mode, location in DEMO_WINDOWS:
            existing = await session.scalar(
                select(AvailabilityWindow).where(
                    AvailabilityWindow.tutor_id == tutor.id,
                    AvailabilityWindow.date == target_date,
                    AvailabilityWindow.mode == mode,
                ),
            )
            if existing is not None:
                continue

            await scheduling_service.create_window(
                WindowCreate(
                    date=target_date,
                    start_time=start_time,
                    end_time=end_time,
                    mode=mode,
                    location=location,
                ),
                tutor,
            )
            created += 1
    return created


async def _run_seed(*, allow_production: bool) -> SeedStats:
    settings = get_settings()
    app_env = settings.app_env.strip().lower()
    if app_env in {"production", "prod"} and not allow_production:
        raise RuntimeError(
            "Refusing to seed demo data in production. "
            "Re-run with --allow-production only if you are absolutely sure.",
        )

    stats = SeedStats()

    async with SessionLocal() as session:
        try:
            repository = IdentityRepository(session)
            await IdentityService(repository).ensure_default_roles()

            users = {}
            for email, full_name, role_name in (
                (DEMO_ADMIN_EMAIL, "Demo Admin", RoleEnum.ADMIN),
                (DEMO_TUTOR_EMAIL, "Demo Tutor", RoleEnum.TUTOR),
                (DEMO_STUDENT_EMAIL, "Demo Student", RoleEnum.STUDENT),
            ):
                user, created = await _ensure_user(
                    session,
                    repository,
                    email=email,
                    full_name=full_name,
                    role_name=role_name,
                )
                users[role_name] = user
                stats.users_created += int(created)

            today = utc_now().astimezone(settings.business_tz).date()
            stats.windows_created = await _ensure_demo_windows(session, tutor=users[RoleEnum.TUTOR], today=today)
            stats.tokens = {
                role_name.value: create_access_token(subject=str(user.id), role=role_name.value)
                for role_name, user in users.items()
            }

            await session.commit()
        except Exception:
            await session.rollback()
            raise

    return stats


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Seed idempotent demo data for TutorBook (users and availability windows).",
    )
    parser.add_argument(
        "--allow-production",
        action="store_true",
        help="Allow seeding even when APP_ENV is production/prod.",
    )
    return parser


def _print_summary(stats: SeedStats) -> None:
    print("Demo seed completed.")
    print(f"- Users created: {stats.users_created}")
    print(f"- Availability windows created: {stats.windows_created}")
    print("")
    print("Demo bearer tokens (non-production only):")
    for role_name, token in stats.tokens.items():
        print(f"- {role_name}: {token}")


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    try:
        stats = asyncio.run(_run_seed(allow_production=args.allow_production))
    except Exception as exc:
        print(f"Demo seed failed: {exc}")
        return 1
    finally:
        asyncio.run(close_engine())

    _print_summary(stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
