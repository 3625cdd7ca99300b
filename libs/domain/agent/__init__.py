from .model import AgentContext, AgentState, Behavior, BehaviorRun
from .service import AgentService

__all__ = ["AgentService", "AgentContext", "AgentState", "Behavior", "BehaviorRun"]
