"""Pre-authorized caller identity handed to the booking engine."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RequestContext:
    """
    Who is calling, as established by the upstream auth layer.

    ``requester_id`` is None for guest flows.
    """

    requester_id: Optional[str] = None
    role: Optional[str] = None
    can_moderate: bool = False

    @property
    def is_guest(self) -> bool:
        return self.requester_id is None

    def to_dict(self) -> dict:
        return {
            "requester_id": self.requester_id,
            "role": self.role,
            "can_moderate": self.can_moderate,
        }
