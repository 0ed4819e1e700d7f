from typing import Optional, Type, TypeVar
from sqlalchemy.orm import Session
from ..application.errors import NotFoundError
from ..domain.models import Company, User, UserCompany
from ..domain.models_alerts import AlertConfig

T = TypeVar("T")


class TenantRepository:
    """
    Acceso a tablas con company_id filtrado siempre por la empresa actual.

    Es el único lugar donde se aplica el predicado de empresa: un registro de
    otra empresa se comporta igual que uno inexistente (NotFoundError).
    """

    def __init__(self, db: Session, company_id: int):
        self.db = db
        self.company_id = company_id

    def query(self, model: Type[T]):
        return self.db.query(model).filter(model.company_id == self.company_id)

    def get(self, model: Type[T], id: Optional[int], resource: Optional[str] = None) -> T:
        obj = self.find(model, id)
        if obj is None:
            raise NotFoundError(resource or model.__name__, id)
        return obj

    def find(self, model: Type[T], id: Optional[int]) -> Optional[T]:
        if id is None:
            return None
        return self.query(model).filter(model.id == id).first()

    def get_for_update(self, model: Type[T], id: int, resource: Optional[str] = None) -> T:
        """Igual que get() pero bloquea la fila hasta el fin de la transacción."""
        obj = self.query(model).filter(model.id == id).with_for_update().first()
        if obj is None:
            raise NotFoundError(resource or model.__name__, id)
        return obj

    def add(self, obj: T) -> T:
        obj.company_id = self.company_id
        self.db.add(obj)
        return obj


class CompanyRepository:
    def __init__(self, db: Session): self.db = db
    def get(self, id: int): return self.db.get(Company, id)
    def list_active(self):
        return self.db.query(Company).filter(Company.active == True).order_by(Company.id).all()
    def alert_config(self, company_id: int) -> Optional[AlertConfig]:
        return self.db.query(AlertConfig).filter(AlertConfig.company_id == company_id).first()


class UserRepository:
    def __init__(self, db: Session): self.db = db
    def by_username(self, username: str):
        return self.db.query(User).filter(User.username == username).first()
    def membership(self, user_id: int, company_id: int) -> Optional[UserCompany]:
        return self.db.query(UserCompany).filter_by(user_id=user_id, company_id=company_id).first()
    def primary_membership(self, user_id: int) -> Optional[UserCompany]:
        q = self.db.query(UserCompany).filter_by(user_id=user_id)
        return q.filter_by(is_primary=True).first() or q.order_by(UserCompany.company_id).first()
