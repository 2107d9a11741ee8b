# The service runs as a flat module set (``main``, ``repo``); its database is
# chosen at import time, so point it at a throwaway SQLite file first.
import os
import sys
import tempfile
from pathlib import Path

SERVICE_DIR = str(Path(__file__).resolve().parent)
if SERVICE_DIR not in sys.path:
    sys.path.insert(0, SERVICE_DIR)

os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="confirmation-"), "confirmation.db"),
)
