from __future__ import annotations

from fastapi import Header, Request

from notifier.auth.access import Caller
from notifier.container import ServiceContainer
from notifier.models.enums import UserRole


def caller_from_headers(
    subject_id: str | None,
    role: str | None,
    authorization: str | None = None,
) -> Caller:
    return Caller(
        subject_id=subject_id.strip() if subject_id and subject_id.strip() else None,
        role=UserRole.parse(role),
        authorization=authorization,
        raw_role=role,
    )


async def get_caller(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
) -> Caller:
    return caller_from_headers(x_user_id, x_user_role, authorization)


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
