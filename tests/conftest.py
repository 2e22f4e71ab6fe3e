import os
import tempfile

# Keep the package's import-time file logging out of the user's home directory.
os.environ.setdefault("TONALPULL_LOG_DIR", tempfile.mkdtemp(prefix="tonalpull-logs-"))
