"""Conflict resolution strategies.

A strategy turns an ``EditConflict`` into a ``ConflictResolution``. Results
depend only on the conflicting changes themselves, never on the order in which
they arrived.
"""

from abc import ABC, abstractmethod
from typing import Dict, Type

from schemagrid.collaboration.models import ConflictResolution, EditConflict
from schemagrid.exceptions import ConfigurationError
from schemagrid.grid.models import GridChange


def _ordering_key(change: GridChange):
    # Equal timestamps fall back to user id, then change id
    return (change.timestamp, change.user_id, change.id)


class ConflictResolutionStrategy(ABC):
    """Interface for conflict resolution policies."""

    name: str = ""

    @abstractmethod
    def resolve(self, conflict: EditConflict) -> ConflictResolution:
        """Resolve a conflict of two or more changes."""
        pass


class LastWriteWinsStrategy(ConflictResolutionStrategy):
    """The change with the greatest timestamp wins."""

    name = "last-write-wins"

    def resolve(self, conflict: EditConflict) -> ConflictResolution:
        winner = max(conflict.conflicting_changes, key=_ordering_key)
        return ConflictResolution(
            conflict_id=conflict.id,
            resolution="accept-local",
            resolved_value=winner.new_value,
            winning_change_id=winner.id,
        )


class FirstWriteWinsStrategy(ConflictResolutionStrategy):
    """The change with the smallest timestamp wins."""

    name = "first-write-wins"

    def resolve(self, conflict: EditConflict) -> ConflictResolution:
        winner = min(conflict.conflicting_changes, key=_ordering_key)
        return ConflictResolution(
            conflict_id=conflict.id,
            resolution="accept-remote",
            resolved_value=winner.new_value,
            winning_change_id=winner.id,
        )


class ManualResolutionStrategy(ConflictResolutionStrategy):
    """Leaves the decision to the participants."""

    name = "manual"

    def resolve(self, conflict: EditConflict) -> ConflictResolution:
        return ConflictResolution(conflict_id=conflict.id, resolution="manual")


STRATEGIES: Dict[str, Type[ConflictResolutionStrategy]] = {
    LastWriteWinsStrategy.name: LastWriteWinsStrategy,
    FirstWriteWinsStrategy.name: FirstWriteWinsStrategy,
    ManualResolutionStrategy.name: ManualResolutionStrategy,
}


def get_strategy(name: str) -> ConflictResolutionStrategy:
    """Instantiate a strategy by name."""
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown conflict strategy: {name} (available: {', '.join(STRATEGIES)})"
        )
