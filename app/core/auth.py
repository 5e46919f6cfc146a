from typing import Any, Dict, List
from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader
from dotenv import load_dotenv

from app.db.client import Database

# Load environment variables
load_dotenv()

# API key header
API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)

ADMIN_ROLES = {"admin", "super_admin"}


def _roles(user: Dict[str, Any]) -> List[str]:
    # role is a text[] column on newer profiles, plain text on older ones
    role = user.get("role")
    if not role:
        return []
    if isinstance(role, str):
        return [role]
    return list(role)


class Auth:
    @staticmethod
    async def get_api_key(api_key: str = Depends(API_KEY_HEADER)) -> Dict[str, Any]:
        """
        Validate API key and return associated user data.
        """
        if not api_key:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="API key is missing",
            )

        # Validate API key against database
        key_data = await Database.validate_api_key(api_key)

        if not key_data:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid API key",
            )

        return key_data


async def get_current_admin_from_api_key(
    api_key_data: Dict[str, Any] = Depends(Auth.get_api_key),
) -> Dict[str, Any]:
    """
    Get current user from API key and require an admin role.
    """
    user = api_key_data["user"]
    if not ADMIN_ROLES.intersection(_roles(user)):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
