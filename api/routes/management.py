"""
User Management API Routes

This module provides REST endpoints for inspecting enrolled users:
- GET /users: List all enrolled users
- GET /users/{user_id}: Get user details

Enrolled identities are immutable; there is no update endpoint.
"""

from fastapi import APIRouter, HTTPException

from api.schemas import (
    UserInfo,
    UserListResponse,
)
from doorlock.identity_store import get_identity_store

# Create router
router = APIRouter(tags=["users"])


@router.get("/users", response_model=UserListResponse)
async def list_users():
    """
    List all enrolled users.

    Returns summary information for each enrolled user including
    their ID, name, enrollment time and number of face samples.
    """
    store = get_identity_store()
    users = store.list_users()

    return UserListResponse(
        users=[UserInfo(**u) for u in users],
        total=len(users),
    )


@router.get("/users/{user_id}", response_model=UserInfo)
async def get_user(user_id: str):
    """
    Get information about a specific user.

    Raises:
        404: If the user is not found.
    """
    store = get_identity_store()
    user = store.get_user(user_id)

    if user is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")

    return UserInfo(**user)
