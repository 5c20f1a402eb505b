"""Explicit request context handed to every service call."""

from dataclasses import dataclass

from hometrace.domain.enums import UserRole


@dataclass(frozen=True)
class Caller:
    """Who is making the request: resolved once per request by the auth layer."""

    user_id: str
    role: UserRole

    @classmethod
    def from_user(cls, user) -> "Caller":
        return cls(user_id=user.id, role=UserRole(user.role))

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_buyer(self) -> bool:
        return self.role == UserRole.BUYER

    @property
    def is_realtor(self) -> bool:
        return self.role == UserRole.REALTOR
