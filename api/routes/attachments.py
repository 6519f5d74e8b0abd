from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.database import get_db
from api.middleware.auth import get_current_user
from api.middleware.authorization import require_roles, OPERATOR_ROLES
from api.services import attachment_service

router = APIRouter()


@router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def detach_file(
    link_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*OPERATOR_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    await attachment_service.detach(
        db, current_user["tenant_id"], link_id, actor_id=current_user["user_id"]
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
