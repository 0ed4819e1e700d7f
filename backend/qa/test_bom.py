"""
Tests de BOM: costeo, disponibilidad y ciclo de vida de versiones
"""
import pytest
from decimal import Decimal

from sqlalchemy import event, text

from stockledger.application.errors import ConflictError, NotFoundError, ValidationError
from stockledger.application.services_bom import (
    BOMService, calculate_bom_unit_cost, check_availability, get_active_bom_version,
    insufficient_items, max_buildable_units,
)
from stockledger.application.services_components import ComponentService
from stockledger.domain.enums import BOMState
from stockledger.domain.models_bom import BOMVersion
from stockledger.infrastructure.unit_of_work import UnitOfWork


@pytest.fixture
def parts(make_component):
    botella = make_component(name="Botella", sku_code="BOT", cost_per_unit=Decimal("2.50"))
    tapa = make_component(name="Tapa", sku_code="TAP", cost_per_unit=Decimal("1.25"))
    return botella, tapa


class TestCosteoBOM:
    """Costo unitario = Σ cantidad × costo vigente"""

    def test_costo_unitario(self, db, company, parts, make_sku):
        botella, tapa = parts
        sku = make_sku(lines=[(botella, 2), (tapa, 4)])
        version = get_active_bom_version(db, company.id, sku.id)
        assert calculate_bom_unit_cost(db, version.id) == Decimal("10.00")

    def test_costo_usa_precio_vigente(self, db, uow, company, parts, make_sku):
        botella, tapa = parts
        sku = make_sku(lines=[(botella, 1)])
        ComponentService(uow).update_component(botella.id, cost_per_unit=Decimal("3.00"))
        uow.commit()
        version = get_active_bom_version(db, company.id, sku.id)
        assert calculate_bom_unit_cost(db, version.id) == Decimal("3.00")


class TestDisponibilidad:
    """Faltantes y unidades construibles"""

    def test_faltantes(self, db, company, parts, make_sku, receive):
        botella, tapa = parts
        sku = make_sku(lines=[(botella, 2), (tapa, 1)])
        receive(botella, 9)
        receive(tapa, 100)
        version = get_active_bom_version(db, company.id, sku.id)

        items = check_availability(db, version.id, Decimal("5"))
        assert len(items) == 2
        short = insufficient_items(items)
        assert len(short) == 1
        assert short[0].component_id == botella.id
        assert short[0].required == Decimal("10")
        assert short[0].available == Decimal("9")
        assert short[0].shortage == Decimal("1")

    def test_max_unidades_construibles(self, db, company, parts, make_sku, receive):
        botella, tapa = parts
        sku = make_sku(lines=[(botella, 2), (tapa, 4)])
        receive(botella, 9)
        receive(tapa, 100)
        assert max_buildable_units(db, company.id, sku.id) == 4

    def test_sin_bom_activo(self, db, company, make_sku):
        sku = make_sku()
        assert max_buildable_units(db, company.id, sku.id) is None


class TestCicloDeVida:
    """draft -> active -> superseded"""

    def test_activar_reemplaza_a_la_activa(self, db, uow, company, parts, make_sku):
        botella, tapa = parts
        sku = make_sku(lines=[(botella, 1)])
        v1 = get_active_bom_version(db, company.id, sku.id)
        service = BOMService(uow)
        v2 = service.create_version(sku.id, "v2", [{"component_id": tapa.id, "quantity_per_unit": 1}])
        assert v2.state == BOMState.DRAFT.value
        uow.commit()

        service.activate_version(v2.id)
        uow.commit()

        db.refresh(v1)
        assert v1.state == BOMState.SUPERSEDED.value
        assert v1.is_active is False
        assert v1.effective_end_date is not None
        assert get_active_bom_version(db, company.id, sku.id).id == v2.id
        active = db.query(BOMVersion).filter(BOMVersion.sku_id == sku.id, BOMVersion.is_active == True).count()
        assert active == 1

    def test_activar_la_activa_es_idempotente(self, db, uow, company, parts, make_sku):
        botella, _ = parts
        sku = make_sku(lines=[(botella, 1)])
        version = get_active_bom_version(db, company.id, sku.id)
        started = version.effective_start_date

        again = BOMService(uow).activate_version(version.id)
        assert again.id == version.id
        assert again.effective_start_date == started

    def test_reactivar_reemplazada_es_conflicto(self, db, uow, company, parts, make_sku):
        botella, tapa = parts
        sku = make_sku(lines=[(botella, 1)])
        v1 = get_active_bom_version(db, company.id, sku.id)
        BOMService(uow).create_version(sku.id, "v2", [{"component_id": tapa.id, "quantity_per_unit": 1}], activate=True)
        uow.commit()

        with pytest.raises(ConflictError):
            BOMService(uow).activate_version(v1.id)

    def test_activacion_concurrente_es_conflicto(self, db, uow, company, parts, make_sku):
        """Otra activación llega a la BD entre la lectura y la escritura: gana una sola"""
        botella, tapa = parts
        sku = make_sku()
        service = BOMService(uow)
        v1 = service.create_version(sku.id, "v1", [{"component_id": botella.id, "quantity_per_unit": 1}])
        v2 = service.create_version(sku.id, "v2", [{"component_id": tapa.id, "quantity_per_unit": 1}])
        uow.commit()

        def other_worker_activates(session, flush_context, instances):
            session.connection().execute(
                text("UPDATE bom_versions SET is_active = 1, state = 'active' WHERE id = :id"), {"id": v1.id}
            )

        event.listen(db, "before_flush", other_worker_activates, once=True)
        try:
            with pytest.raises(ConflictError):
                service.activate_version(v2.id)
        finally:
            if event.contains(db, "before_flush", other_worker_activates):
                event.remove(db, "before_flush", other_worker_activates)
        uow.rollback()

        assert db.query(BOMVersion).filter(BOMVersion.sku_id == sku.id, BOMVersion.is_active == True).count() == 0
        assert service.activate_version(v2.id).is_active is True
        uow.commit()
        assert get_active_bom_version(db, company.id, sku.id).id == v2.id

    def test_solo_draft_es_editable(self, db, uow, company, parts, make_sku):
        botella, tapa = parts
        sku = make_sku(lines=[(botella, 1)])
        active = get_active_bom_version(db, company.id, sku.id)
        with pytest.raises(ConflictError):
            BOMService(uow).update_version(active.id, notes="cambio")

    def test_editar_draft_reemplaza_lineas(self, uow, parts, make_sku):
        botella, tapa = parts
        sku = make_sku()
        service = BOMService(uow)
        draft = service.create_version(sku.id, "v1", [{"component_id": botella.id, "quantity_per_unit": 1}])
        uow.commit()

        service.update_version(draft.id, version_name="v1b", lines=[{"component_id": tapa.id, "quantity_per_unit": 3}])
        uow.commit()

        assert draft.version_name == "v1b"
        assert [(l.component_id, l.quantity_per_unit) for l in draft.lines] == [(tapa.id, Decimal("3"))]

    def test_clonar_crea_draft_con_mismas_lineas(self, db, uow, company, parts, make_sku):
        botella, tapa = parts
        sku = make_sku(lines=[(botella, 2), (tapa, 1)])
        source = get_active_bom_version(db, company.id, sku.id)

        clone = BOMService(uow).clone_version(source.id)
        uow.commit()

        assert clone.state == BOMState.DRAFT.value
        assert clone.is_active is False
        assert clone.version_name == "v1 (copia)"
        assert [(l.component_id, l.quantity_per_unit) for l in clone.lines] == [
            (l.component_id, l.quantity_per_unit) for l in source.lines
        ]

    def test_lineas_invalidas(self, uow, parts, make_sku):
        botella, _ = parts
        sku = make_sku()
        with pytest.raises(ValidationError) as exc:
            BOMService(uow).create_version(sku.id, "v1", [
                {"component_id": botella.id, "quantity_per_unit": 1},
                {"component_id": botella.id, "quantity_per_unit": 2},
                {"component_id": 9999, "quantity_per_unit": 1},
            ])
        assert len(exc.value.details) == 2

    def test_bom_sin_lineas(self, uow, make_sku):
        sku = make_sku()
        with pytest.raises(ValidationError):
            BOMService(uow).create_version(sku.id, "vacío", [])

    def test_version_de_otra_empresa_es_not_found(self, db, company, other_company, parts, make_sku):
        botella, _ = parts
        sku = make_sku(lines=[(botella, 1)])
        version = get_active_bom_version(db, company.id, sku.id)
        with pytest.raises(NotFoundError):
            BOMService(UnitOfWork(db, company_id=other_company.id)).activate_version(version.id)
