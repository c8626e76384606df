"""Connected Apps: the apps a user has authorized, and disconnecting them."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from xcrol.core.exceptions import AuthorizationNotFoundError
from xcrol.core.user_auth import get_current_user_id
from xcrol.database import get_db
from xcrol.oauth2 import connections
from xcrol.oauth2.scopes import describe

router = APIRouter(prefix="/me/connected-apps", tags=["connected-apps"])


@router.get("")
async def list_connected_apps(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    apps = await connections.list_user_authorizations(db, user_id)
    return {
        "apps": [
            {
                "client_id": app.client_id,
                "name": app.name,
                "description": app.description,
                "logo_url": app.logo_url,
                "homepage_url": app.homepage_url,
                "is_verified": app.is_verified,
                "scopes": [info.to_dict() for info in describe(app.scopes)],
                "authorized_at": app.authorized_at.isoformat() if app.authorized_at else "",
                "updated_at": app.updated_at.isoformat() if app.updated_at else "",
            }
            for app in apps
        ],
        "count": len(apps),
    }


@router.delete("/{client_id}")
async def disconnect_app(
    client_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Revoke an app's access; its outstanding tokens stop working immediately."""
    if not await connections.revoke_authorization(db, user_id, client_id):
        raise AuthorizationNotFoundError(client_id)
    return {"revoked": True, "client_id": client_id}
