#!/usr/bin/env python
"""Script to run the task API server."""
import os

import uvicorn

from todo_api.config import get_settings
from todo_api.logging_setup import setup_logging

if __name__ == "__main__":
    setup_logging(get_settings().log_level)
    uvicorn.run(
        "todo_api.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "0") == "1",
    )
