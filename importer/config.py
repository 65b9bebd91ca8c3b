"""
Importer app level configurations
"""

import os

IMPORTER = {
    # Archives referenced by relative path are looked up here
    "ARCHIVE_FOLDER": os.getenv("IMPORTER_ARCHIVE_FOLDER", "/tmp/siteport_archives/"),
    # Wall-clock budget for one import invocation, in seconds
    "EXECUTION_BUDGET_SECONDS": int(os.getenv("IMPORTER_EXECUTION_BUDGET", "600")),
    # Stop this many seconds before the budget is spent
    "EXECUTION_SAFETY_MARGIN_SECONDS": 30,
    # Session housekeeping stays off until the legacy store has been migrated
    "SESSION_EXPIRY_ENABLED": False,
    "SESSION_MAX_AGE_DAYS": 7,
    "FETCH_CHUNK_SIZE": 1024 * 1024,
}
