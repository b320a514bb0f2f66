"""
People Merge - API Router

Provides REST API endpoints:
- POST /api/merge-people - Merge an unclaimed person into a claimed one
- GET /api/groups/{group_id}/merge-audit - Merge history of a group
- GET /api/groups/{group_id}/merge-candidates - People eligible for a merge

Permissions:
- merge-people: group admin
- merge-audit: any group member
- merge-candidates: group admin

Failures are rendered as {"error": "..."} by the MergeError handler
registered in server.py.
"""

import logging
import uuid
from typing import Optional, Dict, Any

from fastapi import APIRouter, Body, Depends
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db, session_scope
from middleware.auth import security, authenticate, get_current_user_required
from services.auth import AuthUser

from .errors import MissingFieldError, InvalidFieldError
from .models import Person
from .service import PeopleMergeService
from .store import MergeStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["People Merge"])


# ==================== REQUEST MODELS ====================

class MergePeopleRequest(BaseModel):
    """Request body for a merge. Presence is checked by the endpoint so that
    missing fields are reported as 400."""
    model_config = ConfigDict(populate_by_name=True)

    group_id: Optional[str] = Field(None, alias="groupId")
    source_person_id: Optional[str] = Field(None, alias="sourcePersonId")
    target_person_id: Optional[str] = Field(None, alias="targetPersonId")


def _parse_ids(payload: Optional[MergePeopleRequest]) -> Dict[str, uuid.UUID]:
    fields = {
        "groupId": payload.group_id if payload else None,
        "sourcePersonId": payload.source_person_id if payload else None,
        "targetPersonId": payload.target_person_id if payload else None,
    }

    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise MissingFieldError(missing)

    parsed = {}
    for name, value in fields.items():
        try:
            parsed[name] = uuid.UUID(value)
        except ValueError:
            raise InvalidFieldError(name)
    return parsed


def _person_to_dict(person: Person) -> Dict[str, Any]:
    return {
        "id": str(person.id),
        "group_id": str(person.group_id),
        "user_id": str(person.user_id) if person.user_id else None,
        "display_name": person.display_name,
        "email": person.email,
        "created_at": person.created_at.isoformat() if person.created_at else None,
        "is_archived": person.is_archived,
    }


# ==================== ENDPOINTS ====================

@router.post("/merge-people")
async def merge_people(
    payload: Optional[MergePeopleRequest] = Body(None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
):
    """
    Merge sourcePersonId into targetPersonId within groupId.

    Requires group admin. The body and the credential are checked before a
    database session is opened, so a 400/401 is returned even when the
    store is misconfigured.
    """
    ids = _parse_ids(payload)
    caller = authenticate(credentials)

    async with session_scope() as db:
        service = PeopleMergeService(MergeStore(db))
        await service.merge_people(
            group_id=ids["groupId"],
            source_person_id=ids["sourcePersonId"],
            target_person_id=ids["targetPersonId"],
            caller_id=caller.id,
        )
    return {"success": True}


@router.get("/groups/{group_id}/merge-audit")
async def list_merge_audit(
    group_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user_required),
    db: AsyncSession = Depends(get_db),
):
    """
    List merge audit entries for a group, newest first.

    Requires group membership.
    """
    service = PeopleMergeService(MergeStore(db))
    entries = await service.list_merge_audit(group_id, current_user.id)
    return {"entries": entries, "count": len(entries)}


@router.get("/groups/{group_id}/merge-candidates")
async def list_merge_candidates(
    group_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user_required),
    db: AsyncSession = Depends(get_db),
):
    """
    List active people that can be merged away (unclaimed) and people that
    can receive a merge (claimed).

    Requires group admin.
    """
    service = PeopleMergeService(MergeStore(db))
    candidates = await service.list_merge_candidates(group_id, current_user.id)
    return {
        "sources": [_person_to_dict(p) for p in candidates.sources],
        "targets": [_person_to_dict(p) for p in candidates.targets],
    }
