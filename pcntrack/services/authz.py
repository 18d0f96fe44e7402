"""Actor identity and company-scoped authorization."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pcntrack.models.api_key import ApiKey, ApiScope
from pcntrack.utils.errors import AuthorizationError


@dataclass(frozen=True)
class Actor:
    """Whoever triggers a mutation: an API key holder or the system itself."""

    label: str
    user_id: int | None = None
    name: str = "system"
    company_id: int | None = None
    is_privileged: bool = False

    @classmethod
    def system(cls, label: str = "system") -> "Actor":
        return cls(label=label, name=label, is_privileged=True)

    @classmethod
    def from_api_key(cls, key: ApiKey) -> "Actor":
        if key.id == 0:
            return cls(label="legacy-apikey", name="legacy-apikey", is_privileged=True)
        user = key.user
        privileged = key.scope == ApiScope.admin or bool(user and user.is_super_admin)
        return cls(
            label=f"apikey:{key.prefix}",
            user_id=user.id if user else None,
            name=user.name if user else key.name,
            company_id=user.company_id if user else None,
            is_privileged=privileged,
        )


def can_access_company(actor: Actor, company_id: int) -> bool:
    return actor.is_privileged or (actor.company_id is not None and actor.company_id == company_id)


def ensure_company_access(actor: Actor, company_id: Any) -> None:
    """Raise unless the actor belongs to ``company_id`` or is cross-company privileged."""

    if not can_access_company(actor, company_id):
        raise AuthorizationError(
            "Actor is not allowed to act on this company.",
            code="COMPANY_ACCESS_DENIED",
            details={"company_id": company_id, "actor": actor.label},
        )


__all__ = ["Actor", "can_access_company", "ensure_company_access"]
