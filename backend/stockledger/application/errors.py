"""
Errores de Dominio
==================

Taxonomía de errores del ledger. Los servicios lanzan estas excepciones y
la capa HTTP las traduce a códigos de estado en un único lugar
(api/exception_handlers.py).
"""
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Any, Dict, List, Optional


class InventoryError(Exception):
    """Excepción base para errores del módulo de inventario"""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(InventoryError):
    """Entrada inválida; details lista {field, message} por cada problema"""

    def __init__(self, message: str, details: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.details = details or []


class NotFoundError(InventoryError):
    """Recurso inexistente o perteneciente a otra empresa"""

    def __init__(self, resource: str, resource_id: Any = None):
        msg = f"{resource} no encontrado" if resource_id is None else f"{resource} {resource_id} no encontrado"
        super().__init__(msg)
        self.resource = resource


class ForbiddenError(InventoryError):
    pass


class ConflictError(InventoryError):
    pass


@dataclass
class ShortageItem:
    component_id: int
    component_name: str
    sku_code: str
    required: Decimal
    available: Decimal
    shortage: Decimal

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("required", "available", "shortage"):
            data[key] = str(data[key])
        return data


class InsufficientInventoryError(InventoryError):
    """Error cuando no hay stock suficiente; items detalla cada faltante"""

    def __init__(self, message: str, items: Optional[List[ShortageItem]] = None):
        super().__init__(message)
        self.items = items or []


class InternalError(InventoryError):
    """Condición inesperada; el detalle se registra en logs, no se expone"""
    pass
