from .executor import Executor
from .results import ApplyResult, ResultCollector

__all__ = ["Executor", "ApplyResult", "ResultCollector"]
