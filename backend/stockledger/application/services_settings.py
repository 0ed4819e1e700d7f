from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..domain.company_settings import CompanySettings, CompanySettingsUpdate, apply_settings_update, merge_company_settings
from ..domain.models import Company
from ..infrastructure.unit_of_work import UnitOfWork
from .errors import NotFoundError, ValidationError


def get_company_settings(db: Session, company_id: int) -> CompanySettings:
    company = db.get(Company, company_id)
    if company is None:
        raise NotFoundError("Empresa", company_id)
    return merge_company_settings(company.settings)


def update_company_settings(uow: UnitOfWork, update: CompanySettingsUpdate) -> CompanySettings:
    """Valida la configuración resultante antes de guardarla; nunca persiste un blob inválido."""
    company = uow.companies.get(uow.company_id)
    if company is None:
        raise NotFoundError("Empresa", uow.company_id)
    current = merge_company_settings(company.settings)
    try:
        merged = apply_settings_update(current, update)
    except PydanticValidationError as e:
        raise ValidationError(
            "Configuración inválida",
            details=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ],
        ) from e
    company.settings = merged.model_dump()
    uow.db.flush()
    return merged
