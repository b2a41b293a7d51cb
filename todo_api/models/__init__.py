from .task import Task, KEY_FIELDS, RESERVED_FIELDS

# Export all models for easy importing
__all__ = ["Task", "KEY_FIELDS", "RESERVED_FIELDS"]
