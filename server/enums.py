import enum
# =========================================================
# ENUMS
# =========================================================
class TaskStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"

class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
