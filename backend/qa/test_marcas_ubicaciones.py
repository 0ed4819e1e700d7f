"""
Tests de Marcas y Ubicaciones

Cubre:
- Alta, edición y listado de marcas por empresa
- Componentes y SKUs solo aceptan marcas de la propia empresa
- Ubicación por defecto: única por empresa, cambio atómico, no se desactiva
"""
import pytest
from decimal import Decimal

from stockledger.application.errors import ConflictError, NotFoundError, ValidationError
from stockledger.application.services_brands import BrandService
from stockledger.application.services_components import ComponentService
from stockledger.application.services_locations import LocationService
from stockledger.application.services_skus import SKUService
from stockledger.domain.enums import SalesChannel
from stockledger.domain.models_inventory import Component, Location
from stockledger.infrastructure.unit_of_work import UnitOfWork


@pytest.fixture
def foreign_brand(db, other_company):
    uow = UnitOfWork(db, company_id=other_company.id)
    brand = BrandService(uow).create_brand("Marca Globex")
    uow.commit()
    return brand


class TestMarcas:

    def test_crear_y_listar(self, uow, make_component):
        service = BrandService(uow)
        norte = service.create_brand("Norte")
        service.create_brand("Sur")
        uow.commit()
        make_component(brand_id=norte.id)

        rows, total = service.list_brands()
        assert total == 2
        assert [(b.name, components, skus) for b, components, skus in rows] == [("Norte", 1, 0), ("Sur", 0, 0)]

    def test_nombre_duplicado(self, uow):
        service = BrandService(uow)
        service.create_brand("Norte")
        with pytest.raises(ConflictError):
            service.create_brand("Norte")

    def test_nombre_vacio(self, uow):
        with pytest.raises(ValidationError):
            BrandService(uow).create_brand("   ")

    def test_mismo_nombre_en_otra_empresa(self, uow, foreign_brand):
        brand = BrandService(uow).create_brand(foreign_brand.name)
        assert brand.company_id != foreign_brand.company_id

    def test_desactivar_oculta_del_listado(self, uow):
        service = BrandService(uow)
        brand = service.create_brand("Norte")
        service.update_brand(brand.id, active=False)
        uow.commit()
        assert service.list_brands()[1] == 0
        assert service.list_brands(include_inactive=True)[1] == 1

    def test_marca_de_otra_empresa_no_existe(self, uow, foreign_brand):
        service = BrandService(uow)
        with pytest.raises(NotFoundError):
            service.update_brand(foreign_brand.id, name="Robada")
        assert service.list_brands()[1] == 0


class TestMarcaEnCatalogo:
    """brand_id del cuerpo se resuelve contra la empresa activa"""

    def test_componente_con_marca_ajena(self, db, uow, foreign_brand):
        with pytest.raises(NotFoundError):
            ComponentService(uow).create_component(name="Botella", sku_code="BOT", brand_id=foreign_brand.id)
        uow.rollback()
        assert db.query(Component).filter(Component.sku_code == "BOT").count() == 0

    def test_editar_componente_con_marca_ajena(self, uow, make_component, foreign_brand):
        component = make_component()
        with pytest.raises(NotFoundError):
            ComponentService(uow).update_component(component.id, brand_id=foreign_brand.id)
        uow.rollback()
        assert component.brand_id is None

    def test_sku_con_marca_ajena(self, uow, foreign_brand):
        with pytest.raises(NotFoundError):
            SKUService(uow).create_sku(
                name="Jarabe", internal_code="JAR", sales_channel=SalesChannel.GENERIC.value,
                brand_id=foreign_brand.id,
            )

    def test_marca_inactiva(self, uow):
        service = BrandService(uow)
        brand = service.create_brand("Norte")
        service.update_brand(brand.id, active=False)
        with pytest.raises(ValidationError):
            ComponentService(uow).create_component(name="Botella", sku_code="BOT", brand_id=brand.id)

    def test_marca_propia(self, uow):
        brand = BrandService(uow).create_brand("Norte")
        component = ComponentService(uow).create_component(
            name="Botella", sku_code="BOT", cost_per_unit=Decimal("1"), brand_id=brand.id,
        )
        assert component.brand_id == brand.id


class TestUbicacionPorDefecto:

    def defaults(self, db, company):
        return db.query(Location).filter(Location.company_id == company.id, Location.is_default == True).all()

    def test_empresa_nueva_tiene_una(self, db, company, default_location):
        assert self.defaults(db, company) == [default_location]

    def test_cambiar_por_defecto(self, db, uow, company, default_location, second_location):
        LocationService(uow).set_default_location(second_location.id)
        uow.commit()
        assert self.defaults(db, company) == [second_location]
        assert LocationService(uow).get_default_location_id() == second_location.id

    def test_crear_como_por_defecto(self, db, uow, company):
        location = LocationService(uow).create_location("Planta 2", is_default=True)
        uow.commit()
        assert self.defaults(db, company) == [location]

    def test_no_afecta_a_otra_empresa(self, db, uow, company, other_company, second_location):
        LocationService(uow).set_default_location(second_location.id)
        uow.commit()
        assert len(self.defaults(db, other_company)) == 1

    def test_no_se_desactiva_la_por_defecto(self, uow, default_location):
        with pytest.raises(ConflictError):
            LocationService(uow).deactivate_location(default_location.id)
        with pytest.raises(ConflictError):
            LocationService(uow).update_location(default_location.id, is_active=False)

    def test_inactiva_no_puede_ser_por_defecto(self, uow, second_location):
        service = LocationService(uow)
        service.deactivate_location(second_location.id)
        with pytest.raises(ValidationError):
            service.set_default_location(second_location.id)

    def test_nombre_duplicado(self, uow, default_location):
        with pytest.raises(ConflictError):
            LocationService(uow).create_location(default_location.name)

    def test_ensure_no_duplica(self, db, uow, company, default_location):
        assert LocationService(uow).ensure_default_location().id == default_location.id
        assert len(self.defaults(db, company)) == 1

    def test_ubicacion_de_otra_empresa(self, db, other_company, uow):
        foreign = db.query(Location).filter(Location.company_id == other_company.id).one()
        with pytest.raises(NotFoundError):
            LocationService(uow).set_default_location(foreign.id)
