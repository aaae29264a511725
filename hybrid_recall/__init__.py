"""hybrid-recall - hybrid lexical/semantic memory retrieval for chat assistants."""

__version__ = "0.1.0"

from hybrid_recall.config import Config
from hybrid_recall.conversation_index import ConversationIndex, MemoryEntry
from hybrid_recall.memory import MemoryEngine, create_memory_engine
from hybrid_recall.semantic_memory import SearchCapability, SemanticMemoryIndex

__all__ = [
    "Config",
    "ConversationIndex",
    "MemoryEngine",
    "MemoryEntry",
    "SearchCapability",
    "SemanticMemoryIndex",
    "create_memory_engine",
    "__version__",
]
