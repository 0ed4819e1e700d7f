from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt
from passlib.context import CryptContext
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies import get_db
from ..domain.enums import UserRole
from ..domain.models import Brand, User
from ..infrastructure.repositories import UserRepository
from ..application.errors import NotFoundError, ValidationError

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def create_access_token(data: dict, expires_minutes: Optional[int] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm="HS256")
    return encoded_jwt

def get_current_user(db: Session = Depends(get_db), token: str = Depends(oauth2_scheme)) -> User:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token inválido")
    username = payload.get("sub")
    if not username:
        raise HTTPException(status_code=401, detail="Credenciales inválidas")
    user = UserRepository(db).by_username(username)
    if not user or not user.active:
        raise HTTPException(status_code=401, detail="Usuario no encontrado")
    return user


@dataclass
class TenantContext:
    """Usuario, empresa seleccionada y rol del usuario en esa empresa."""
    user: User
    company_id: int
    role: UserRole
    brand_id: Optional[int] = None

    @property
    def user_id(self) -> int:
        return self.user.id


def get_tenant(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    x_company_id: Optional[str] = Header(default=None),
    x_brand_id: Optional[str] = Header(default=None),
) -> TenantContext:
    """
    Resuelve la empresa de la request: cabecera X-Company-Id o, si no viene,
    la empresa principal del usuario. Una empresa de la que el usuario no es
    miembro se trata como inexistente.
    """
    users = UserRepository(db)
    if x_company_id:
        try:
            company_id = int(x_company_id)
        except ValueError:
            raise ValidationError("X-Company-Id inválido", details=[{"field": "X-Company-Id", "message": "Debe ser numérico"}])
        membership = users.membership(user.id, company_id)
    else:
        membership = users.primary_membership(user.id)
    if membership is None or not membership.company.active:
        raise NotFoundError("Empresa")

    brand_id = None
    if x_brand_id:
        try:
            brand_id = int(x_brand_id)
        except ValueError:
            raise ValidationError("X-Brand-Id inválido", details=[{"field": "X-Brand-Id", "message": "Debe ser numérico"}])
        brand = db.query(Brand).filter(Brand.id == brand_id, Brand.company_id == membership.company_id).first()
        if brand is None:
            raise NotFoundError("Marca", brand_id)

    return TenantContext(user=user, company_id=membership.company_id, role=UserRole(membership.role), brand_id=brand_id)
