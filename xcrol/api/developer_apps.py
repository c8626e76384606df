"""Developer portal: register and manage "Login with XCROL" client apps."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from xcrol.core.user_auth import get_current_user_id
from xcrol.database import get_db
from xcrol.oauth2 import clients
from xcrol.oauth2.models import OAuthClient

router = APIRouter(prefix="/developer/apps", tags=["developer-apps"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class AppCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    redirect_uris: list[str] = Field(..., min_length=1)
    description: Optional[str] = None
    logo_url: Optional[str] = Field(None, max_length=500)
    homepage_url: Optional[str] = Field(None, max_length=500)

class AppUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    redirect_uris: Optional[list[str]] = None
    description: Optional[str] = None
    logo_url: Optional[str] = Field(None, max_length=500)
    homepage_url: Optional[str] = Field(None, max_length=500)


def _app_to_dict(client: OAuthClient) -> dict:
    return {
        "client_id": client.client_id,
        "name": client.name,
        "description": client.description,
        "logo_url": client.logo_url,
        "homepage_url": client.homepage_url,
        "redirect_uris": client.redirect_uri_list,
        "is_verified": client.is_verified,
        "created_at": client.created_at.isoformat() if client.created_at else "",
    }


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
async def create_developer_app(
    req: AppCreateRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Register a new app. The client secret is only ever returned here."""
    try:
        client, client_secret = await clients.register_client(
            db,
            name=req.name,
            redirect_uris=req.redirect_uris,
            owner_id=user_id,
            description=req.description,
            logo_url=req.logo_url,
            homepage_url=req.homepage_url,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {**_app_to_dict(client), "client_secret": client_secret}

@router.get("")
async def list_my_apps(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """List apps owned by the current user."""
    apps = await clients.list_clients(db, user_id)
    return {"apps": [_app_to_dict(a) for a in apps], "count": len(apps)}

@router.get("/{client_id}")
async def get_my_app(
    client_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    client = await clients.get_client(db, client_id)
    if client is None or client.owner_id != user_id:
        raise HTTPException(status_code=404, detail=f"App {client_id} not found")
    return _app_to_dict(client)

@router.patch("/{client_id}")
async def update_my_app(
    client_id: str,
    req: AppUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        client = await clients.update_client(
            db, client_id, user_id, **req.model_dump(exclude_unset=True),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _app_to_dict(client)

@router.post("/{client_id}/secret")
async def rotate_app_secret(
    client_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Issue a new client secret; the previous one stops working immediately."""
    client_secret = await clients.rotate_client_secret(db, client_id, user_id)
    return {"client_id": client_id, "client_secret": client_secret}

@router.delete("/{client_id}")
async def delete_my_app(
    client_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Delete an app and revoke everything issued to it."""
    await clients.delete_client(db, client_id, user_id)
    return {"deleted": True, "client_id": client_id}
