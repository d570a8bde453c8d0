from fastapi import APIRouter, Depends

from tasktracker.auth.service import AuthService
from tasktracker.dependencies import get_auth_service
from tasktracker.models import LoginRequest, LoginResponse

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: LoginRequest, auth: AuthService = Depends(get_auth_service)
):
    """Exchange username and password for a bearer token"""
    return await auth.login(credentials.username, credentials.password)
