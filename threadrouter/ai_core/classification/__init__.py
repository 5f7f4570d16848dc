from threadrouter.ai_core.classification.cache import AnalysisCache
from threadrouter.ai_core.classification.task_classifier import (
    ClassificationError,
    TaskClassifier,
    format_thread,
)

__all__ = ["AnalysisCache", "ClassificationError", "TaskClassifier", "format_thread"]
