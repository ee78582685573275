"""ORM models exposed for metadata discovery."""
from habitstory.db.models.habit import Habit, HabitEntry
from habitstory.db.models.job_record import JobRecord
from habitstory.db.models.task_instance import TaskInstance
from habitstory.db.models.task_template import TaskTemplate
from habitstory.db.models.user import Assignment, User, UserProfile

__all__ = [
    "Assignment",
    "Habit",
    "HabitEntry",
    "JobRecord",
    "TaskInstance",
    "TaskTemplate",
    "User",
    "UserProfile",
]
