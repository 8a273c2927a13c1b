"""
Vercel entry point for Helpdesk Copilot API
"""
import sys
import os

# Add parent directory to path
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

# Set environment variables for serverless
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("KB_PATH", os.path.join(parent_dir, "knowledge_base.yaml"))

from mangum import Mangum
from src.main import app

# Lambda handler for ASGI app (lifespan off; triage services are built on first request)
handler = Mangum(app, lifespan="off")
