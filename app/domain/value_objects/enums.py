"""Domain enums — pure Python, no external dependencies."""

from enum import Enum


class PreviewStatus(str, Enum):
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class DistributionMethod(str, Enum):
    GENERATIVE = "Generative"
    RULE_BASED = "RuleBased"


class TaskStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"


class GroupRole(str, Enum):
    ADMIN = "Admin"
    REGULAR_USER = "RegularUser"


# Statuses that still count towards a user's current workload
OPEN_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.OVERDUE)
