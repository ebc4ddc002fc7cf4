"""Result types that make recovered decisions observable."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .models import Action

__all__ = ["ActionResult", "Ok", "Recovered"]


@dataclass(frozen=True, slots=True)
class Ok:
    action: Action

    @property
    def recovered(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class Recovered:
    """A fallback action substituted for a failed or invalid one."""

    action: Action
    reason: str

    @property
    def recovered(self) -> bool:
        return True


ActionResult = Union[Ok, Recovered]
