"""Actor performing an operation."""

from pydantic import BaseModel, ConfigDict

from .enums import ActorRole


class Actor(BaseModel):
    """Who drives an operation, used for authority checks."""

    model_config = ConfigDict(strict=True, frozen=True)

    role: ActorRole
    ref: str | None = None

    def __str__(self) -> str:
        return f"{self.role.value}:{self.ref}" if self.ref else self.role.value


SYSTEM = Actor(role=ActorRole.SYSTEM)
