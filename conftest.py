"""
Root conftest - test environment for the whole suite.

Settings are read once at import time, so they are pinned here before any
`app` module is imported.
"""
import os
import sys
from pathlib import Path

_root = Path(__file__).resolve().parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CELERY_EAGER"] = "1"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["SCAN_SUBMIT_RATE"] = "1000/minute"
os.environ["SCAN_RETRY_BASE_SECONDS"] = "5"
os.environ["SCAN_MAX_ATTEMPTS"] = "3"
os.environ["GOOGLE_API_KEY"] = ""
os.environ["GOOGLE_SEARCH_ENGINE_ID"] = ""
os.environ["FACE_MATCHER_URL"] = ""
os.environ["JWT_SECRET"] = "test-secret"
os.environ["FRONTEND_ORIGIN"] = "*"
