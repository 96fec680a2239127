from datetime import timedelta
from typing import Optional
from fastapi import HTTPException, status
from passlib.context import CryptContext
from jose import JWTError, jwt
from app.repositories.user_repository import UserRepository
from app.models.base import utcnow
from app.models.user import User, UserRole
from app.api.schemas.auth import TokenData


class AuthService:
    """Vérification des tokens émis par la plateforme d'inscription"""

    def __init__(self, user_repository: UserRepository, secret_key: str, algorithm: str = "HS256",
                 access_token_expire_minutes: int = 30):
        self.user_repository = user_repository
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_token_expire_minutes = access_token_expire_minutes

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Vérifie un mot de passe"""
        return self.pwd_context.verify(plain_password, hashed_password)

    def get_password_hash(self, password: str) -> str:
        """Hash un mot de passe"""
        return self.pwd_context.hash(password)

    def create_access_token(self, data: dict, expires_delta: Optional[timedelta] = None) -> str:
        """Crée un token d'accès JWT"""
        to_encode = data.copy()
        expire = utcnow() + (expires_delta or timedelta(minutes=self.access_token_expire_minutes))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> TokenData:
        """Vérifie et décode un token JWT"""
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
            username: str = payload.get("sub")
            role: str = payload.get("role")

            if username is None:
                raise credentials_exception

            token_data = TokenData(
                username=username,
                role=UserRole(role) if role else None,
                school_id=payload.get("school_id"),
            )
        except (JWTError, ValueError):
            raise credentials_exception

        return token_data

    def get_current_user(self, token: str) -> User:
        """Récupère l'utilisateur courant à partir du token"""
        token_data = self.verify_token(token)
        user = self.user_repository.get_by_username(token_data.username)

        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found"
            )

        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Inactive user"
            )

        return user
