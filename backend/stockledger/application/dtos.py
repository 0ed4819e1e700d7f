from pydantic import BaseModel, Field
from typing import Generic, List, Optional, TypeVar
from datetime import date as date_type, datetime
from decimal import Decimal

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    page_size: int


class ShortageItemOut(BaseModel):
    component_id: int
    component_name: str
    sku_code: str
    required: Decimal
    available: Decimal
    shortage: Decimal

    class Config:
        from_attributes = True


class LotAllocationIn(BaseModel):
    lot_id: int
    quantity: Decimal = Field(..., gt=0)


class LotAllocationOut(BaseModel):
    lot_id: int
    lot_number: str
    quantity: Decimal
    expiry_date: Optional[date_type] = None

    class Config:
        from_attributes = True


class TransactionLineOut(BaseModel):
    id: int
    component_id: int
    location_id: Optional[int] = None
    lot_id: Optional[int] = None
    quantity_change: Decimal
    cost_per_unit: Optional[Decimal] = None

    class Config:
        from_attributes = True


class FinishedGoodsLineOut(BaseModel):
    id: int
    sku_id: int
    location_id: int
    quantity_change: Decimal
    cost_per_unit: Optional[Decimal] = None

    class Config:
        from_attributes = True


class TransactionOut(BaseModel):
    id: int
    company_id: int
    type: str
    date: date_type
    location_id: Optional[int] = None
    from_location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    sku_id: Optional[int] = None
    bom_version_id: Optional[int] = None
    units_built: Optional[Decimal] = None
    unit_bom_cost: Optional[Decimal] = None
    total_bom_cost: Optional[Decimal] = None
    sales_channel: Optional[str] = None
    supplier: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_by_id: Optional[int] = None
    created_at: datetime
    lines: List[TransactionLineOut] = []
    finished_goods_lines: List[FinishedGoodsLineOut] = []

    class Config:
        from_attributes = True
