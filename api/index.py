"""
Serverless entry point for the Service Desk Escalation API
"""
import os

# Set environment variables for serverless
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("ESCALATION_CONFIG_PATH", "/tmp/escalation_config.yaml")
os.environ.setdefault("UPLOAD_DIR", "/tmp/uploads")
os.environ.setdefault("ESCALATION_INTERVAL_MINUTES", "0")  # Disable scheduler in serverless

from mangum import Mangum  # noqa: E402

from src.infrastructure.database import init_database  # noqa: E402
from src.main import app  # noqa: E402

# Lifespan is off, so the engine is created at import time
init_database()

# Lambda handler for ASGI app (disable lifespan for serverless)
handler = Mangum(app, lifespan="off")
