# =============================================================================
# tests/integration/test_mel_service.py
# Integration Tests for MelService (listings, rule CRUD, summary)
# =============================================================================

import json

import pytest

from melguard.errors import NotFoundError, ReconcileError, ValidationError
from melguard.models.mel import MelRuleItem, MelRuleUpdate

pytestmark = pytest.mark.integration

SECTOR_ID = 10
SECTOR_NAME = "UTI Adulto"


@pytest.fixture
def icu(fake_source, equipment_row, work_order_row):
    """3 ventilators (one down), 2 monitors, 1 wheelchair, 2 beds"""
    rows = [
        equipment_row(1, "Ventilador Pulmonar", sector_id=SECTOR_ID, model="Servo-i A"),
        equipment_row(2, "Ventilador Pulmonar", sector_id=SECTOR_ID, model="Servo-i B"),
        equipment_row(3, "Ventilador Pulmonar", sector_id=SECTOR_ID, model="Servo-i C"),
        equipment_row(4, "Monitor Multiparâmetro", sector_id=SECTOR_ID),
        equipment_row(5, "Monitor Multiparâmetro", sector_id=SECTOR_ID),
        equipment_row(6, "Cadeira de rodas", sector_id=SECTOR_ID),
        equipment_row(101, "Cama elétrica", sector_id=SECTOR_ID),
        equipment_row(102, "Cama elétrica", sector_id=SECTOR_ID),
        equipment_row(900, "Ventilador Pulmonar", sector_id=11, sector_name="Pronto Socorro"),
    ]
    fake_source.equipment_rows.extend(rows)
    fake_source.work_order_rows.append(work_order_row(1, equipment_id=3))
    return fake_source


def _item(key, name, minimum, equipment_ids=None):
    return MelRuleItem(equipment_group_key=key, equipment_group_name=name,
                       minimum_quantity=minimum, equipment_ids=equipment_ids)


class TestSectorListing:
    """list_groups_for_sector / list_mel_for_sector"""

    async def test_default_groups_without_rules(self, mel_service, icu):
        rows = await mel_service.list_groups_for_sector(SECTOR_ID)

        assert [(r.group_key, r.total, r.available) for r in rows] == [
            ("ventilador", 3, 2),
            ("monitor", 2, 2),
        ]
        assert all(r.minimum_quantity is None and not r.em_alerta for r in rows)
        assert [eq.id for eq in rows[0].equipment] == ["1", "2", "3"]

    async def test_rule_groups_flagged(self, mel_service, icu):
        await mel_service.upsert_rules(SECTOR_ID, [
            _item("ventilador", "Ventilador Pulmonar", 3),
            _item("grp-camas", "Camas", 2, equipment_ids=[101, 102]),
            _item("desfibrilador", "Desfibrilador", 1),
        ], sector_name=SECTOR_NAME, reconcile=False)

        rows = {r.group_key: r for r in await mel_service.list_groups_for_sector(SECTOR_ID)}

        assert rows["ventilador"].em_alerta
        assert rows["ventilador"].minimum_quantity == 3
        assert rows["monitor"].minimum_quantity is None
        assert rows["grp-camas"].custom
        assert (rows["grp-camas"].total, rows["grp-camas"].em_alerta) == (2, False)
        assert (rows["desfibrilador"].total, rows["desfibrilador"].em_alerta) == (0, True)

    async def test_inactive_rule_not_in_alert(self, mel_service, icu):
        rule = (await mel_service.upsert_rules(
            SECTOR_ID, [_item("ventilador", "Ventilador Pulmonar", 3)], reconcile=False))[0]
        await mel_service.update_rule(rule.id, MelRuleUpdate(active=False), reconcile=False)

        rows = await mel_service.list_mel_for_sector(SECTOR_ID)

        assert [r.group_key for r in rows] == ["ventilador"]
        assert not rows[0].em_alerta

    async def test_mel_listing_only_configured_groups(self, mel_service, icu):
        await mel_service.upsert_rules(
            SECTOR_ID, [_item("monitor", "Monitor", 1)], reconcile=False)

        rows = await mel_service.list_mel_for_sector(SECTOR_ID)

        assert [r.group_key for r in rows] == ["monitor"]

    async def test_sector_matched_by_name_when_rows_lack_ids(self, mel_service, fake_source,
                                                              equipment_row):
        fake_source.equipment_rows.extend([
            equipment_row(1, "Foco Cirúrgico", sector_id=None, sector_name="CENTRO CIRÚRGICO"),
            equipment_row(2, "Foco Cirúrgico", sector_id=None, sector_name="Radiologia"),
        ])

        rows = await mel_service.list_groups_for_sector(2, sector_name="Centro Cirurgico")

        assert [(r.group_key, r.total) for r in rows] == [("foco-cirurgico", 1)]


class TestRuleWrites:
    """upsert_rules / update_rule / delete_*"""

    async def test_upsert_reconciles(self, mel_service, alert_store, icu):
        rules = await mel_service.upsert_rules(
            SECTOR_ID, [_item("ventilador", "Ventilador Pulmonar", 3)],
            sector_name=SECTOR_NAME, user="enf.chefe")

        assert rules[0].created_by == "enf.chefe"
        assert rules[0].sector_name == SECTOR_NAME
        alerts = await alert_store.list_active()
        assert [(a.equipment_group_key, a.current_available) for a in alerts] == [("ventilador", 2)]

    async def test_upsert_updates_existing_rule(self, mel_service, rule_store, icu):
        first = (await mel_service.upsert_rules(
            SECTOR_ID, [_item("ventilador", "Ventilador", 3)], reconcile=False))[0]
        second = (await mel_service.upsert_rules(
            SECTOR_ID, [_item("ventilador", "Ventilador Pulmonar", 1)], reconcile=False))[0]

        assert second.id == first.id
        assert second.minimum_quantity == 1
        assert second.equipment_group_name == "Ventilador Pulmonar"
        assert len(await rule_store.list_by_sector(SECTOR_ID)) == 1

    async def test_equipment_ids_stored_as_custom_membership(self, mel_service, icu):
        rule = (await mel_service.upsert_rules(
            SECTOR_ID, [_item("grp-camas", "Camas", 2, equipment_ids=[101, "102"])],
            reconcile=False))[0]

        assert json.loads(rule.group_pattern) == {"type": "custom", "equipmentIds": ["101", "102"]}

    async def test_custom_membership_kept_when_ids_omitted(self, mel_service, icu):
        await mel_service.upsert_rules(
            SECTOR_ID, [_item("grp-camas", "Camas", 2, equipment_ids=[101])], reconcile=False)
        rule = (await mel_service.upsert_rules(
            SECTOR_ID, [_item("grp-camas", "Camas", 3)], reconcile=False))[0]

        assert rule.minimum_quantity == 3
        assert "101" in rule.group_pattern

    async def test_unknown_group_without_ids_rejected(self, mel_service, rule_store, icu):
        with pytest.raises(ValidationError) as exc_info:
            await mel_service.upsert_rules(SECTOR_ID, [
                _item("ventilador", "Ventilador", 1),
                _item("tomografo", "Tomógrafo", 1),
            ])

        assert exc_info.value.field == "equipment_ids"
        assert await rule_store.list_by_sector(SECTOR_ID) == []

    async def test_negative_minimum_rejected(self, mel_service):
        item = MelRuleItem.model_construct(
            equipment_group_key="ventilador", equipment_group_name="Ventilador",
            minimum_quantity=-1, justification=None, equipment_ids=None)

        with pytest.raises(ValidationError) as exc_info:
            await mel_service.upsert_rules(SECTOR_ID, [item])
        assert exc_info.value.field == "minimum_quantity"

    async def test_blank_key_rejected(self, mel_service):
        with pytest.raises(ValidationError):
            await mel_service.upsert_rules(SECTOR_ID, [_item("   ", "Ventilador", 1)])

    async def test_source_outage_does_not_block_rule_write(self, mel_service, rule_store, icu):
        icu.fail_equipment = True

        await mel_service.upsert_rules(SECTOR_ID, [_item("monitor", "Monitor", 1)])

        assert len(await rule_store.list_by_sector(SECTOR_ID)) == 1

    async def test_update_rule(self, mel_service, alert_store, icu):
        rule = (await mel_service.upsert_rules(
            SECTOR_ID, [_item("ventilador", "Ventilador Pulmonar", 1)]))[0]
        assert await alert_store.list_active() == []

        updated = await mel_service.update_rule(
            rule.id, MelRuleUpdate(minimum_quantity=3, justification="Leitos ampliados"),
            user="coord")

        assert updated.minimum_quantity == 3
        assert updated.justification == "Leitos ampliados"
        assert updated.updated_by == "coord"
        assert len(await alert_store.list_active()) == 1

    async def test_clearing_membership_of_custom_group_rejected(self, mel_service, icu):
        rule = (await mel_service.upsert_rules(
            SECTOR_ID, [_item("grp-camas", "Camas", 2, equipment_ids=[101])], reconcile=False))[0]

        with pytest.raises(ValidationError):
            await mel_service.update_rule(rule.id, MelRuleUpdate(equipment_ids=[]))

    async def test_update_missing_rule(self, mel_service):
        with pytest.raises(NotFoundError):
            await mel_service.update_rule(404, MelRuleUpdate(minimum_quantity=1))

    async def test_delete_rule_resolves_alert(self, mel_service, alert_store, icu):
        rule = (await mel_service.upsert_rules(
            SECTOR_ID, [_item("ventilador", "Ventilador Pulmonar", 3)]))[0]
        assert len(await alert_store.list_active()) == 1

        await mel_service.delete_rule(rule.id)

        assert await alert_store.list_active() == []
        with pytest.raises(NotFoundError):
            await mel_service.get_rule(rule.id)

    async def test_delete_by_key_and_sector(self, mel_service, rule_store, icu):
        await mel_service.upsert_rules(SECTOR_ID, [
            _item("ventilador", "Ventilador", 1),
            _item("monitor", "Monitor", 1),
        ], reconcile=False)

        await mel_service.delete_rule_by_key(SECTOR_ID, "monitor", reconcile=False)
        assert [r.equipment_group_key for r in await rule_store.list_by_sector(SECTOR_ID)] == \
            ["ventilador"]

        assert await mel_service.delete_sector_rules(SECTOR_ID, reconcile=False) == 1
        with pytest.raises(NotFoundError):
            await mel_service.delete_sector_rules(SECTOR_ID)
        with pytest.raises(NotFoundError):
            await mel_service.delete_rule_by_key(SECTOR_ID, "monitor")


class TestSummaryAndAlerts:

    async def test_summary(self, mel_service, icu):
        await mel_service.upsert_rules(SECTOR_ID, [
            _item("ventilador", "Ventilador Pulmonar", 3),
            _item("monitor", "Monitor", 2),
        ], sector_name=SECTOR_NAME)

        summary = await mel_service.summary()

        assert summary["total_sectors_with_mel"] == 1
        assert summary["total_sectors_with_problem"] == 1
        assert summary["total_active_alerts"] == 1
        problem = summary["problems"][0]
        assert (problem["available"], problem["minimum"], problem["shortfall"]) == (2, 3, 1)
        sector = summary["sectors"][0]
        assert sector["sector_name"] == SECTOR_NAME
        assert sector["total_rules"] == 2
        assert sector["rules_in_alert"] == 1

    async def test_summary_without_rules_skips_source(self, mel_service, fake_source):
        summary = await mel_service.summary()

        assert summary["total_sectors_with_mel"] == 0
        assert fake_source.equipment_calls == 0

    async def test_recalculate_surfaces_source_outage(self, mel_service, icu):
        icu.fail_work_orders = True

        with pytest.raises(ReconcileError) as exc_info:
            await mel_service.recalculate()
        assert exc_info.value.phase == "work_orders"

    async def test_alert_counts(self, mel_service, icu):
        await mel_service.upsert_rules(SECTOR_ID, [_item("ventilador", "Ventilador", 3)])

        assert await mel_service.count_active_alerts() == 1
        assert len(await mel_service.list_alerts(active_only=False)) == 1
