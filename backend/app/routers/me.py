"""
Caller identity endpoint.
"""

from fastapi import APIRouter, Depends

from app.auth import VerifiedUser, get_current_user

router = APIRouter()


@router.get("")
async def get_me(user: VerifiedUser = Depends(get_current_user)):
    """Return the verified caller's id, email (null when the token has none) and claims."""
    return {"id": user.id, "email": user.email, "claims": user.claims}
