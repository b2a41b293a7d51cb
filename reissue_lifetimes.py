#!/usr/bin/env python
"""Reapply the configured retention to every live task.

Run after changing TASK_RETENTION_SECONDS or TASK_RETENTION_OVERRIDES.
Tasks that have already expired stay expired.
"""
from todo_api.config import get_settings
from todo_api.database import create_db_engine, create_tables
from todo_api.lifecycle import policy_from_settings
from todo_api.logging_setup import setup_logging
from todo_api.store import TaskStore

settings = get_settings()
setup_logging(settings.log_level)

engine = create_db_engine(settings)
create_tables(engine)
store = TaskStore(engine)

touched = store.reissue_lifetimes(policy_from_settings(settings), batch_size=settings.reaper_batch_size)
print(f"Reissued lifetimes for {touched} tasks")
