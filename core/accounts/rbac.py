from dataclasses import dataclass
from typing import Optional

ADMIN = "admin"
USER = "user"
ROLES = (ADMIN, USER)

# actions only admins may perform
ADMIN_ONLY = {
    "users.list",    # list accounts
    "users.create",  # create accounts
    "users.delete",  # delete accounts
}


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, resolved once per request."""
    user_id: str
    username: str
    role: str
    token_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def can(principal: Principal, action: str) -> bool:
    if action in ADMIN_ONLY:
        return principal.is_admin
    return True
