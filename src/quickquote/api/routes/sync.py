"""Sync trigger and status routes."""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from quickquote.api import deps
from quickquote.services import Services
from quickquote.sync.connectivity import ConnectivityState
from quickquote.sync.orchestrator import SyncResult, SyncStatus

router = APIRouter()


class AutoSyncRequest(BaseModel):
    enabled: bool


class NetworkStateRequest(BaseModel):
    is_connected: bool
    is_internet_reachable: Optional[bool] = None


@router.post("/now", response_model=SyncResult)
async def sync_now(services: Services = Depends(deps.services)):
    """Run a processing pass now (subject to the in-progress and interval guards)."""
    return await services.orchestrator.sync_now()


@router.get("/status", response_model=SyncStatus)
def sync_status(services: Services = Depends(deps.services)):
    return services.orchestrator.get_sync_status()


@router.post("/auto", response_model=SyncStatus)
def set_auto_sync(request: AutoSyncRequest, services: Services = Depends(deps.services)):
    if request.enabled:
        services.orchestrator.start_auto_sync()
    else:
        services.orchestrator.stop_auto_sync()
    return services.orchestrator.get_sync_status()


@router.post("/network")
def report_network(request: NetworkStateRequest, services: Services = Depends(deps.services)):
    """
    Connectivity pushed by a client device. Routed through the connectivity
    source when it accepts reports, otherwise straight to the orchestrator.
    """
    state = ConnectivityState(
        is_connected=request.is_connected,
        is_internet_reachable=request.is_internet_reachable,
    )
    if hasattr(services.connectivity, "set_state"):
        services.connectivity.set_state(state)
    else:
        services.orchestrator.on_network_change(state.is_connected, state.is_internet_reachable)
    return {"is_online": state.is_online}
