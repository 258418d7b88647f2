import os
import tempfile

# keep test runs from writing into the project's log directory
os.environ.setdefault("UNIPROV_LOG_DIR", tempfile.mkdtemp(prefix="uniprov-logs-"))
