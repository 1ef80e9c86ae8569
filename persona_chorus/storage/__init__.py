from .personas import load_personas_json
from .store import PersonaStore

__all__ = ["PersonaStore", "load_personas_json"]
