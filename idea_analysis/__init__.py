"""Multi-stage idea analysis backend package."""

from .app import create_app
from .config import get_llm_settings
from .pipeline import AnalysisPipeline, run_analysis

__all__ = ["AnalysisPipeline", "create_app", "get_llm_settings", "run_analysis"]
