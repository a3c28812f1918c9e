import os
import tempfile

# database.py builds its engine at import time; keep it away from ./data.
os.environ.setdefault("BALANCE_DATA_DIR", tempfile.mkdtemp(prefix="balance-tests-"))
