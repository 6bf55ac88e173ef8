from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, WebSocket

from autoprint.services.orchestrator import PrintOrchestrator

def get_orchestrator(request: Request) -> PrintOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not started")
    return orchestrator

def get_ws_orchestrator(websocket: WebSocket) -> Optional[PrintOrchestrator]:
    return getattr(websocket.app.state, "orchestrator", None)

# Dependency for the running orchestrator
Orchestrator = Annotated[PrintOrchestrator, Depends(get_orchestrator)]
