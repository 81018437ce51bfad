"""
FormPilot - layered form-filling orchestrator

包初始化：导入时加载项目 .env（OPENAI_API_KEY 等）。
"""

from __future__ import annotations

from dotenv import find_dotenv, load_dotenv

# Load the project .env once on import; explicit environment variables win.
load_dotenv(find_dotenv(usecwd=True), override=False)
