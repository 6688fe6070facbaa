"""
Root pytest configuration.
Switches the app to testing mode (in-memory SQLite, eager Celery, no SMTP)
before any application module reads its settings.
"""
import os

os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ.setdefault("JWT_SECRET", "test-secret")
