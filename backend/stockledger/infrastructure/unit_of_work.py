from contextlib import contextmanager
from typing import Optional
from sqlalchemy.orm import Session
from ..db import SessionLocal
from .repositories import TenantRepository, CompanyRepository, UserRepository

class UnitOfWork:
    def __init__(self, db: Session = None, company_id: Optional[int] = None):
        self._owns_session = db is None
        self.db: Session = db if db is not None else SessionLocal()
        self.company_id = company_id
        self.tenant = TenantRepository(self.db, company_id) if company_id is not None else None
        self.companies = CompanyRepository(self.db)
        self.users = UserRepository(self.db)

    def commit(self): self.db.commit()
    def rollback(self): self.db.rollback()
    def close(self):
        # Una sesión inyectada (request) la cierra quien la creó
        if self._owns_session:
            self.db.close()

    @contextmanager
    def transaction(self):
        try:
            yield self
            self.commit()
        except Exception:
            self.rollback()
            raise
        finally:
            self.close()
