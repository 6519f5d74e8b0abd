from fastapi import Depends, HTTPException, status

from api.middleware.auth import get_current_user

OPERATOR_ROLES = ("admin", "owner", "project_manager")


def require_roles(*allowed_roles: str):
    """
    FastAPI dependency factory for role-based access control.

    Usage:
        @router.post("/bid-packages")
        async def create_bid_package(
            current_user: dict = Depends(get_current_user),
            _auth: None = Depends(require_roles(*OPERATOR_ROLES)),
        ):
    """
    async def check_role(current_user: dict = Depends(get_current_user)):
        if current_user["role"] not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": (
                            f"Role '{current_user['role']}' cannot perform this action. "
                            f"Required: {allowed_roles}"
                        ),
                    }
                },
            )
        return None

    return check_role


def check_tenant_scope(current_user: dict, entity_tenant_id) -> None:
    """Operators only see rows of their own tenant; anything else looks missing."""
    if str(current_user["tenant_id"]) != str(entity_tenant_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": {"code": "NOT_FOUND", "message": "Resource not found"}},
        )
