from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.dependencies import get_auth_service
from app.services.auth_service import AuthService
from app.models.user import User, UserRole

# Sécurité Bearer Token
security = HTTPBearer()

SCHOOL_ADMIN_ROLES = (UserRole.ADMIN, UserRole.SCHOOL)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    auth_service: AuthService = Depends(get_auth_service)
) -> User:
    """Récupère l'utilisateur courant à partir du token"""
    return auth_service.get_current_user(credentials.credentials)


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    """Récupère l'utilisateur courant actif"""
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user"
        )
    return current_user


def require_school_admin(current_user: User = Depends(get_current_active_user)) -> User:
    """Réservé aux rôles admin et école"""
    if current_user.role not in SCHOOL_ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions"
        )
    return current_user
