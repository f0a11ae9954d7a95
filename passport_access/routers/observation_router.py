"""
Observation Router - edits to records synced from the external clinical system
"""

import logging
from typing import Dict, Any
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from passport_access.core.context import Actor, ClientInfo
from passport_access.dependencies import require_role, get_client_info, get_observation_service
from passport_access.services.observations import ObservationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/observations", tags=["observations"])


class ObservationUpdate(BaseModel):
    changes: Dict[str, Any]


@router.get("/{observation_id}/edit-access")
def get_edit_access(
    observation_id: str,
    actor: Actor = Depends(require_role("doctor")),
    service: ObservationService = Depends(get_observation_service),
):
    info = service.edit_access(observation_id, actor.actor_id)
    return {"success": True, "message": info["reason"], "data": info}


@router.put("/{observation_id}")
def update_observation(
    observation_id: str,
    body: ObservationUpdate,
    actor: Actor = Depends(require_role("doctor")),
    client: ClientInfo = Depends(get_client_info),
    service: ObservationService = Depends(get_observation_service),
):
    observation = service.update(observation_id, actor.actor_id, body.changes, client)
    return {"success": True, "message": "Observation updated", "data": observation.to_dict()}
