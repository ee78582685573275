"""Domain exceptions shared by the scheduling services."""
from __future__ import annotations


class HabitStoryError(Exception):
    """Base class for domain errors."""


class ConfigurationError(HabitStoryError):
    """The archetype catalog has no entry for a user's house.

    Requires an operator fix; retrying the same input cannot succeed.
    """


class TransientIOError(HabitStoryError):
    """A retryable persistence or dispatch failure."""


class PreferencesValidationError(HabitStoryError, ValueError):
    """Stored schedule preferences could not be parsed."""


class ConcurrencyConflict(HabitStoryError):
    """A conditional update lost its race or a job guard declined to run."""


class UserNotFoundError(HabitStoryError, LookupError):
    pass


class TemplateNotFoundError(HabitStoryError, LookupError):
    pass


class TaskNotFoundError(HabitStoryError, LookupError):
    pass


class HabitNotFoundError(HabitStoryError, LookupError):
    pass


class TaskStateError(HabitStoryError):
    """A lifecycle action is not allowed from the task's current status."""

    def __init__(self, task_id, status: str, action: str) -> None:
        super().__init__(f"Task {task_id} cannot be {action} from status {status}")
        self.task_id = task_id
        self.status = status
        self.action = action
