from autoprint.events.hub import Event, EventHub, Subscription, SubscriptionClosed
from autoprint.services.builder import OrchestratorBuilder
from autoprint.services.orchestrator import PrintOrchestrator

__all__ = [
    "Event",
    "EventHub",
    "OrchestratorBuilder",
    "PrintOrchestrator",
    "Subscription",
    "SubscriptionClosed",
]
