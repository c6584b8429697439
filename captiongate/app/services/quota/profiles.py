"""Profile tier lookup for authenticated callers."""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from captiongate.app.core.config import settings

from .models import Plan


class ProfileDirectory(ABC):
    """Answers which plan an authenticated user is on."""

    @abstractmethod
    async def get_plan(self, user_id: str) -> Plan:
        """Return ``Plan.USER`` or ``Plan.PRO`` for ``user_id``."""


class StaticProfileDirectory(ProfileDirectory):
    """Directory backed by the configured set of pro user ids."""

    def __init__(self, pro_user_ids: Optional[Iterable[str]] = None) -> None:
        ids = settings.pro_user_ids if pro_user_ids is None else pro_user_ids
        self._pro_user_ids = frozenset(ids)

    async def get_plan(self, user_id: str) -> Plan:
        return Plan.PRO if user_id in self._pro_user_ids else Plan.USER
