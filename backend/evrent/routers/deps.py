# backend/evrent/routers/deps.py
"""
Identity supplied by the upstream auth layer.

The gateway authenticates the caller and forwards X-User-Id / X-User-Role;
this service trusts them and does not re-authenticate.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

ROLES = ("driver", "owner", "admin")


@dataclass(frozen=True)
class CurrentUser:
    id: int
    role: str


def get_current_user(
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> CurrentUser:
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id",
        )
    role = (x_user_role or "driver").lower()
    if role not in ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown role '{role}'",
        )
    return CurrentUser(id=x_user_id, role=role)


def require_role(*roles: str):
    def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Forbidden",
            )
        return user
    return _check
