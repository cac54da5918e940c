"""
Configuration — loads settings from environment / .env file.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).parent
DESIGN_RUN_DIR = Path(os.getenv("DESIGN_RUN_DIR", str(PROJECT_ROOT / "design_runs")))
AGENT_NAME = "design-agent"

# OpenAI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.3"))
OPENAI_MAX_TOKENS = int(os.getenv("OPENAI_MAX_TOKENS", "8192"))
OPENAI_RATE_LIMIT_RETRIES = int(os.getenv("OPENAI_RATE_LIMIT_RETRIES", "2"))

# Temporal
TEMPORAL_HOST = os.getenv("TEMPORAL_HOST", "localhost:7233")
TEMPORAL_TASK_QUEUE = "design-agent-queue"
TEMPORAL_NAMESPACE = "default"
STAGE_TIMEOUT_MINUTES = int(os.getenv("STAGE_TIMEOUT_MINUTES", "30"))

# Pipeline
MIN_VARIANTS = 1
MAX_VARIANTS = 5
TRACE_ENABLED = os.getenv("TRACE_ENABLED", "true").lower() not in ("0", "false", "no")

# Max runs returned by the listing endpoint
MAX_LISTED_RUNS = 50
