#!/usr/bin/env python3
"""
Script para cargar datos de demostración en StockLedger.

Uso:
  cd backend && python -m scripts.seed_demo_data
  cd backend && python scripts/seed_demo_data.py

Crea (si no existen):
- Empresa Demo con su ubicación por defecto y una de producto terminado
- Usuario admin (admin/admin) como administrador de Empresa Demo
- 3 componentes con recepciones (dos con lote y vencimiento)
- 1 SKU con BOM activo y un build de ejemplo

Ideal para pruebas funcionales y E2E.
"""
import sys
from pathlib import Path
from datetime import date, timedelta
from decimal import Decimal

# Agregar backend al path
backend_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_dir))

from stockledger.db import SessionLocal, init_db
from stockledger.domain.enums import LocationType, SalesChannel, UserRole
from stockledger.domain.models import Company, User, UserCompany
from stockledger.domain.models_inventory import Component
from stockledger.infrastructure.repositories import UserRepository
from stockledger.infrastructure.unit_of_work import UnitOfWork
from stockledger.application.services_bom import BOMService
from stockledger.application.services_components import ComponentService
from stockledger.application.services_locations import LocationService
from stockledger.application.services_skus import SKUService
from stockledger.application.services_transactions import TransactionEngine
from stockledger.security.auth import get_password_hash

DEMO_COMPANY_NAME = "Empresa Demo"

DEMO_COMPONENTS = [
    # nombre, código, costo, punto de reorden, lead time
    ("Botella PET 500ml", "BOT-500", Decimal("0.35"), 200, 14),
    ("Tapa rosca 28mm", "TAP-28", Decimal("0.05"), 200, 7),
    ("Etiqueta frontal", "ETQ-01", Decimal("0.02"), 500, 10),
]


def ensure_company_and_admin(db):
    """Empresa Demo y usuario admin vinculado como administrador."""
    company = db.query(Company).filter(Company.name == DEMO_COMPANY_NAME).first()
    if not company:
        company = Company(name=DEMO_COMPANY_NAME, active=True)
        db.add(company)
        db.flush()
        print(f"   ✓ Empresa creada: {company.name} (id={company.id})")

    user = UserRepository(db).by_username("admin")
    if not user:
        user = User(username="admin", password_hash=get_password_hash("admin"), full_name="Administrador", active=True)
        db.add(user)
        db.flush()
        print("   ✓ Usuario admin creado")

    if UserRepository(db).membership(user.id, company.id) is None:
        db.add(UserCompany(user_id=user.id, company_id=company.id, role=UserRole.ADMIN.value, is_primary=True))
        print("   ✓ Admin asociado a Empresa Demo")
    return company, user


def seed_inventory(db, company_id: int, user_id: int) -> int:
    """Componentes, recepciones, SKU con BOM y un build. Devuelve transacciones creadas."""
    uow = UnitOfWork(db, company_id=company_id)
    if uow.tenant.query(Component).first() is not None:
        print("   ⚠ La empresa ya tiene componentes, saltando inventario")
        return 0

    locations = LocationService(uow)
    locations.ensure_default_location()
    finished = locations.create_location("Producto Terminado", type=LocationType.FINISHED_GOODS.value)

    components = ComponentService(uow)
    created = []
    for name, code, cost, reorder_point, lead_time in DEMO_COMPONENTS:
        created.append(components.create_component(
            name=name, sku_code=code, cost_per_unit=cost,
            reorder_point=reorder_point, lead_time_days=lead_time,
        ))
    db.flush()

    engine = TransactionEngine(uow, user_id=user_id)
    today = date.today()
    bottle, cap, label = created
    count = 0
    engine.receipt(bottle.id, Decimal("600"), date=today - timedelta(days=30), supplier="Envases del Sur",
                   lot_number="BOT-2401", expiry_date=today + timedelta(days=180))
    engine.receipt(bottle.id, Decimal("300"), date=today - timedelta(days=10), supplier="Envases del Sur",
                   lot_number="BOT-2402", expiry_date=today + timedelta(days=365))
    engine.receipt(cap.id, Decimal("1000"), date=today - timedelta(days=30), supplier="Tapas SAC")
    engine.receipt(label.id, Decimal("2000"), date=today - timedelta(days=30), supplier="Gráfica Lima")
    count += 4

    sku = SKUService(uow).create_sku(name="Agua 500ml", internal_code="AGUA-500", sales_channel=SalesChannel.GENERIC.value)
    BOMService(uow).create_version(
        sku.id,
        "v1",
        [
            {"component_id": bottle.id, "quantity_per_unit": Decimal("1")},
            {"component_id": cap.id, "quantity_per_unit": Decimal("1")},
            {"component_id": label.id, "quantity_per_unit": Decimal("1")},
        ],
        activate=True,
    )
    engine.build(sku.id, Decimal("250"), date=today - timedelta(days=5), output_location_id=finished.id)
    count += 1
    uow.commit()
    print(f"   ✓ {len(created)} componentes, 1 SKU con BOM activo, {count} transacciones")
    return count


def main():
    print("🌱 StockLedger - Carga de datos de demostración")
    print("=" * 50)

    init_db()
    db = SessionLocal()
    try:
        print("\n1. Empresa y usuario...")
        company, user = ensure_company_and_admin(db)
        db.commit()

        print("\n2. Inventario de ejemplo...")
        seed_inventory(db, company.id, user.id)

        print("\n✅ Datos de demostración listos.")
        print("   Usuario: admin / admin")
        print(f"   Empresa: {DEMO_COMPANY_NAME}")
        return 0

    except Exception as e:
        print(f"\n❌ Error: {e}")
        import traceback
        traceback.print_exc()
        db.rollback()
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
