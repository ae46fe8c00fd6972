"""Three-tier memory: short-term transcript, working summary, long-term facts."""

from carecore.memory.extraction import MemoryClassifier
from carecore.memory.store import MemoryStore
from carecore.memory.working import derive_working_memory

__all__ = ["MemoryClassifier", "MemoryStore", "derive_working_memory"]
