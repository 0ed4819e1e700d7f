"""
Configuración por Empresa
=========================

Modelo tipado de la configuración guardada como JSON en Company.settings.
Toda lectura pasa por merge_company_settings(): el blob guardado se
combina sobre los defaults, se descartan claves desconocidas y un blob
inválido cae a los defaults.
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from .enums import FORECAST_EXCLUDABLE_TYPES

logger = logging.getLogger(__name__)

_EXCLUDABLE = {t.value for t in FORECAST_EXCLUDABLE_TYPES}


class CompanySettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reorder_warning_multiplier: float = Field(default=1.5, gt=1.0, le=10.0)
    allow_negative_inventory: bool = False
    expiry_warning_days: int = Field(default=30, ge=0, le=365)
    forecast_lookback_days: int = Field(default=30, ge=7, le=365)
    forecast_safety_days: int = Field(default=7, ge=0, le=90)
    forecast_excluded_transaction_types: List[str] = Field(default_factory=lambda: ["initial", "adjustment"])

    @field_validator("forecast_excluded_transaction_types")
    @classmethod
    def validate_excluded_types(cls, v: List[str]) -> List[str]:
        invalid = [t for t in v if t not in _EXCLUDABLE]
        if invalid:
            raise ValueError(f"Tipos no excluibles: {', '.join(invalid)}")
        # Sin duplicados, manteniendo el orden
        return list(dict.fromkeys(v))


class CompanySettingsUpdate(BaseModel):
    """Actualización parcial; solo se aplican los campos enviados."""
    model_config = ConfigDict(extra="forbid")

    reorder_warning_multiplier: Optional[float] = None
    allow_negative_inventory: Optional[bool] = None
    expiry_warning_days: Optional[int] = None
    forecast_lookback_days: Optional[int] = None
    forecast_safety_days: Optional[int] = None
    forecast_excluded_transaction_types: Optional[List[str]] = None


def merge_company_settings(raw: Optional[Dict[str, Any]]) -> CompanySettings:
    if not raw:
        return CompanySettings()
    known = {k: v for k, v in raw.items() if k in CompanySettings.model_fields}
    try:
        return CompanySettings(**known)
    except PydanticValidationError as e:
        logger.warning("Configuración de empresa inválida, se usan valores por defecto: %s", e)
        return CompanySettings()


def apply_settings_update(current: CompanySettings, update: CompanySettingsUpdate) -> CompanySettings:
    """
    Combina una actualización parcial con la configuración vigente.

    Lanza pydantic.ValidationError si el resultado no es válido; el llamador
    la traduce a un error de dominio con las rutas de campo.
    """
    data = current.model_dump()
    data.update(update.model_dump(exclude_unset=True, exclude_none=True))
    return CompanySettings(**data)
