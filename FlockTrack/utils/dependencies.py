from dataclasses import dataclass

from fastapi import Header


@dataclass(frozen=True)
class Actor:
    """Who is calling. Identity is asserted by the upstream gateway."""
    user_id: int | None
    user_name: str | None


def get_actor(
    x_user_id: int | None = Header(None, description="Acting user id"),
    x_user_name: str | None = Header(None, description="Acting user display name"),
) -> Actor:
    return Actor(user_id=x_user_id, user_name=x_user_name)
