"""Owner identity: an authenticated user or an anonymous browsing session."""

from __future__ import annotations

from dataclasses import dataclass

from .enums import OwnerType


@dataclass(frozen=True)
class Owner:
    """
    Resolved caller identity.

    Exactly one kind is carried per value; carts and holds are always looked up
    by the ``(kind, id)`` pair, never by both kinds at once.
    """

    kind: OwnerType
    id: str

    def __post_init__(self) -> None:
        if not self.id or not str(self.id).strip():
            raise ValueError("owner id must be a non-empty string")
        object.__setattr__(self, "kind", OwnerType(self.kind))

    @classmethod
    def user(cls, user_id: str) -> "Owner":
        return cls(OwnerType.USER, user_id)

    @classmethod
    def session(cls, session_id: str) -> "Owner":
        return cls(OwnerType.SESSION, session_id)

    @property
    def is_user(self) -> bool:
        return self.kind is OwnerType.USER

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.id}"

    def as_filter(self) -> dict[str, str]:
        """Column filter matching the ``owner_type``/``owner_id`` pair."""
        return {"owner_type": self.kind.value, "owner_id": self.id}

    def __str__(self) -> str:
        return self.key
