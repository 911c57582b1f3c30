"""Conversation Insights - pattern mining, clustering and insights for chatbot logs."""

from importlib.metadata import version

try:
    __version__ = version("conversation-insights")
except Exception:
    __version__ = "0.1.0"  # Fallback for development

# Re-export public API
from conversation_insights.processor import (
    AnalysisCancelled,
    AnalysisResult,
    ConversationDataProcessor,
    ConversationInsightsError,
)
from conversation_insights.storage import (
    Cluster,
    DataSummary,
    Insight,
    Message,
    Pattern,
    PatternExtractionConfig,
    Session,
    SessionFilter,
    SQLiteStorage,
)
from conversation_insights.vocabulary import Vocabulary, load_vocabulary

__all__ = [
    # Version
    "__version__",
    # Processor
    "ConversationDataProcessor",
    "AnalysisResult",
    "ConversationInsightsError",
    "AnalysisCancelled",
    # Storage
    "SQLiteStorage",
    "Session",
    "SessionFilter",
    "Message",
    "Pattern",
    "Cluster",
    "Insight",
    "DataSummary",
    "PatternExtractionConfig",
    # Vocabulary
    "Vocabulary",
    "load_vocabulary",
]
