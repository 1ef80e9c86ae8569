from .attention import AttentionTracker
from .common import chunk_text
from .debounce import Debouncer
from .engine import ResponseEngine
from .maintenance import DailyMaintenanceScheduler
from .memory import ConversationMemory
from .models import ContentPart, ConversationTurn, InboundMessage, MemoryRecord, MessageRecord, Persona
from .orchestrator import OrchestrationCore
from .router import PersonaRouter, RouteDecision

__all__ = [
    "AttentionTracker",
    "ContentPart",
    "ConversationMemory",
    "ConversationTurn",
    "DailyMaintenanceScheduler",
    "Debouncer",
    "InboundMessage",
    "MemoryRecord",
    "MessageRecord",
    "OrchestrationCore",
    "Persona",
    "PersonaRouter",
    "ResponseEngine",
    "RouteDecision",
    "chunk_text",
]
