"""
Record store tests.
Tests for derived writes, validation, reports and export/import.
"""

import json
import pytest
from datetime import datetime, timedelta

from fluxo.database.models import (
    Activity,
    Contact,
    Expense,
    NotificationType,
    Opportunity,
    OpportunityStatus,
    PlanType,
    TransactionType,
    User,
    UserSettings,
)
from fluxo.errors import NotFoundError, ValidationError
from fluxo.store import RecordStore, coerce_amount


def _opportunity(user: User, contact: Contact, **kwargs) -> Opportunity:
    values = dict(
        user_id=user.id,
        contact_id=contact.id,
        contact_name=contact.name,
        product="Bolo de aniversário",
        value=350.0,
    )
    values.update(kwargs)
    return Opportunity(**values)


def _incomes(store: RecordStore, user: User) -> list[Expense]:
    return store.expenses.list_for_user(user.id, TransactionType.INCOME)


class TestCoerceAmount:
    """Test numeric coercion of amounts."""

    @pytest.mark.parametrize(
        "raw, expected",
        [("50", 50.0), (" 12,5 ", 12.5), (7, 7.0), (0, 0.0), (99.9, 99.9)],
    )
    def test_accepts_numbers(self, raw, expected):
        assert coerce_amount(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", None, True, -1, "-3", "nan", "inf", ""])
    def test_rejects_invalid(self, raw):
        with pytest.raises(ValidationError):
            coerce_amount(raw)


class TestOpportunityRules:
    """Test status side effects on opportunities."""

    def test_entering_won_creates_one_income(self, store: RecordStore, user: User, contact: Contact):
        opp = store.save_opportunity(_opportunity(user, contact))

        store.update_opportunity_status(user.id, opp.id, OpportunityStatus.WON)

        incomes = _incomes(store, user)
        assert len(incomes) == 1
        assert incomes[0].amount == 350.0
        assert incomes[0].category == "Vendas"
        assert incomes[0].description == "Venda: Bolo de aniversário - Carlos Souza"

    def test_saving_won_again_creates_nothing(self, store: RecordStore, user: User, contact: Contact):
        opp = store.save_opportunity(_opportunity(user, contact))
        store.update_opportunity_status(user.id, opp.id, OpportunityStatus.WON)

        won = store.opportunities.get(user.id, opp.id)
        won.value = 400.0
        store.save_opportunity(won)

        assert len(_incomes(store, user)) == 1

    def test_created_as_won_counts_as_entering_won(self, store: RecordStore, user: User, contact: Contact):
        store.save_opportunity(_opportunity(user, contact, status=OpportunityStatus.WON))

        assert len(_incomes(store, user)) == 1
        assert store.list_notifications(user.id) == []

    def test_rewinning_after_loss_creates_second_income(self, store: RecordStore, user: User, contact: Contact):
        opp = store.save_opportunity(_opportunity(user, contact, status=OpportunityStatus.WON))
        store.update_opportunity_status(user.id, opp.id, OpportunityStatus.LOST)
        store.update_opportunity_status(user.id, opp.id, OpportunityStatus.WON)

        assert len(_incomes(store, user)) == 2

    def test_status_change_notifies_owner(self, store: RecordStore, user: User, contact: Contact):
        opp = store.save_opportunity(_opportunity(user, contact))

        store.update_opportunity_status(user.id, opp.id, OpportunityStatus.NEGOTIATION)
        store.update_opportunity_status(user.id, opp.id, OpportunityStatus.LOST)

        notifications = store.list_notifications(user.id)
        assert [n.title for n in notifications] == [
            "Oportunidade perdida",
            "Oportunidade atualizada",
        ]
        assert all(n.type == NotificationType.OPPORTUNITY for n in notifications)

    def test_unchanged_status_does_not_notify(self, store: RecordStore, user: User, contact: Contact):
        opp = store.save_opportunity(_opportunity(user, contact))
        opp.product = "Torta"
        store.save_opportunity(opp)

        assert store.list_notifications(user.id) == []

    def test_negative_value_rejected(self, store: RecordStore, user: User, contact: Contact):
        with pytest.raises(ValidationError):
            store.save_opportunity(_opportunity(user, contact, value=-10))

    def test_unknown_contact_rejected(self, store: RecordStore, user: User, contact: Contact):
        with pytest.raises(NotFoundError):
            store.save_opportunity(_opportunity(user, contact, contact_id="missing"))

    def test_contact_name_is_not_refreshed(self, store: RecordStore, user: User, contact: Contact):
        """The denormalized name keeps the value from creation time."""
        opp = store.save_opportunity(_opportunity(user, contact))
        contact.name = "Carlos S. Lima"
        store.save_contact(contact)

        assert store.opportunities.get(user.id, opp.id).contact_name == "Carlos Souza"

    def test_update_status_of_missing_opportunity(self, store: RecordStore, user: User):
        with pytest.raises(NotFoundError):
            store.update_opportunity_status(user.id, "missing", OpportunityStatus.WON)

    def test_plain_string_status_is_accepted(self, store: RecordStore, user: User, contact: Contact):
        opp = store.save_opportunity(_opportunity(user, contact, status="WON"))

        assert opp.status == OpportunityStatus.WON
        assert store.opportunities.get(user.id, opp.id).status == OpportunityStatus.WON
        assert len(_incomes(store, user)) == 1

    def test_unknown_status_rejected(self, store: RecordStore, user: User, contact: Contact):
        with pytest.raises(ValidationError):
            store.save_opportunity(_opportunity(user, contact, status="PENDING"))

    def test_other_user_cannot_take_over_opportunity(self, store: RecordStore, user: User, contact: Contact, make_user):
        opp = store.save_opportunity(_opportunity(user, contact))
        other = make_user(email="bia@example.com", name="Bia")
        other_contact = store.save_contact(Contact(user_id=other.id, name="Joana"))

        with pytest.raises(NotFoundError):
            store.save_opportunity(
                _opportunity(other, other_contact, id=opp.id, status=OpportunityStatus.WON)
            )

        assert store.opportunities.get(user.id, opp.id).status == OpportunityStatus.OPEN
        assert store.opportunities.list_for_user(other.id) == []
        assert _incomes(store, other) == []


class TestCreateLead:
    """Test the contact plus opportunity lead helper."""

    def test_creates_contact_and_open_opportunity(self, store: RecordStore, user: User):
        contact, opp = store.create_lead(user.id, "Joana", "Kit festa", phone="11988887777")

        assert store.contacts.get(user.id, contact.id).phone == "11988887777"
        saved = store.opportunities.get(user.id, opp.id)
        assert saved.status == OpportunityStatus.OPEN
        assert saved.value == 0.0
        assert saved.contact_id == contact.id
        assert saved.product == "Kit festa"

    def test_missing_interest_creates_nothing(self, store: RecordStore, user: User):
        with pytest.raises(ValidationError):
            store.create_lead(user.id, "Joana", "  ")

        assert store.contacts.list_for_user(user.id) == []


class TestLedgerAndActivities:
    """Test expenses and activities validation."""

    def test_expense_category_defaults(self, store: RecordStore, user: User):
        expense = store.save_expense(Expense(user_id=user.id, description="Farinha", amount="20", category=""))
        income = store.save_expense(
            Expense(user_id=user.id, description="Encomenda", amount=90, category="", type=TransactionType.INCOME)
        )

        assert expense.amount == 20.0
        assert expense.category == "Geral"
        assert income.category == "Vendas"

    def test_expense_requires_description(self, store: RecordStore, user: User):
        with pytest.raises(ValidationError):
            store.save_expense(Expense(user_id=user.id, description="", amount=1))

    def test_activity_with_unknown_opportunity(self, store: RecordStore, user: User, now: datetime):
        with pytest.raises(NotFoundError):
            store.save_activity(Activity(user_id=user.id, title="Ligar", date=now, opportunity_id="missing"))

    def test_settings_minutes_must_be_positive(self, store: RecordStore, user: User):
        with pytest.raises(ValidationError):
            store.save_settings(UserSettings(user_id=user.id, activity_alert_minutes=0))


class TestPlans:
    """Test stored plan configurations."""

    def test_seeded_defaults(self, store: RecordStore):
        plans = store.get_plans()
        assert plans[PlanType.BASIC].max_contacts == 50
        assert plans[PlanType.EXPERT].max_opportunities == -1

    def test_save_plan_configs(self, store: RecordStore):
        plans = store.get_plans()
        plans[PlanType.BASIC].max_contacts = 80

        store.save_plan_configs({PlanType.BASIC: plans[PlanType.BASIC]})

        assert store.get_plans()[PlanType.BASIC].max_contacts == 80

    def test_invalid_limit_rejected(self, store: RecordStore):
        plans = store.get_plans()
        plans[PlanType.BASIC].max_contacts = -5

        with pytest.raises(ValidationError):
            store.save_plan_configs(plans)


class TestDashboardSummary:
    """Test the dashboard aggregation."""

    def test_summary_figures(self, store: RecordStore, user: User, contact: Contact, now: datetime):
        store.save_opportunity(_opportunity(user, contact, value=100.0))
        store.save_opportunity(_opportunity(user, contact, value=50.0, status=OpportunityStatus.NEGOTIATION))
        store.save_opportunity(_opportunity(user, contact, value=300.0, status=OpportunityStatus.WON))
        store.save_opportunity(_opportunity(user, contact, value=999.0, status=OpportunityStatus.LOST))
        store.save_expense(Expense(user_id=user.id, description="Gás", amount=80.0))
        store.save_activity(Activity(user_id=user.id, title="Entrega", date=now + timedelta(hours=2)))
        store.save_activity(Activity(user_id=user.id, title="Passada", date=now - timedelta(hours=2)))

        summary = store.dashboard_summary(user.id, now=now)

        assert summary.won_total == 300.0
        assert summary.pipeline_total == 150.0
        assert summary.income_total == 300.0
        assert summary.expense_total == 80.0
        assert summary.balance == 220.0
        assert summary.status_counts[OpportunityStatus.LOST] == 1
        assert [a.title for a in summary.upcoming_activities] == ["Entrega"]


class TestExportImport:
    """Test database backup and restore."""

    @pytest.fixture
    def populated(self, store: RecordStore, user: User, contact: Contact, now: datetime):
        opp = store.save_opportunity(_opportunity(user, contact, status=OpportunityStatus.WON))
        store.save_activity(Activity(user_id=user.id, title="Entrega", date=now, opportunity_id=opp.id))
        store.create_notification(user.id, "Bem-vinda", "Conta criada")
        return store

    def _snapshot(self, store: RecordStore) -> dict:
        return json.loads(store.export_database())["tables"]

    def test_round_trip_reproduces_records(self, populated: RecordStore):
        exported = populated.export_database()
        before = self._snapshot(populated)

        populated.reset_database()
        assert populated.users.list_all() == []

        populated.import_database(exported)

        assert self._snapshot(populated) == before

    def test_upsert_mode_keeps_existing_rows(self, populated: RecordStore, make_user):
        exported = populated.export_database()
        newcomer = make_user(email="novo@example.com", name="Novo")

        populated.import_database(exported, mode="upsert")

        assert populated.users.get_by_id(newcomer.id) is not None

    def test_invalid_document_changes_nothing(self, populated: RecordStore):
        before = self._snapshot(populated)

        with pytest.raises(ValidationError):
            populated.import_database(json.dumps({"tables": {"contacts": []}}))
        with pytest.raises(ValidationError):
            populated.import_database("not json")

        assert self._snapshot(populated) == before

    def test_failed_replace_is_rolled_back(self, populated: RecordStore):
        document = json.loads(populated.export_database())
        document["tables"]["contacts"].append({"name": "sem id"})
        before = self._snapshot(populated)

        with pytest.raises(ValidationError):
            populated.import_database(json.dumps(document))

        assert self._snapshot(populated) == before

    @pytest.mark.parametrize(
        "table, field, bad_value",
        [
            ("activities", "date", "amanha"),
            ("opportunities", "status", "PENDING"),
            ("opportunities", "value", "muito"),
            ("users", "role", "ROOT"),
            ("notifications", "type", "SPAM"),
        ],
    )
    def test_malformed_values_roll_back_import(
        self, populated: RecordStore, user: User, table: str, field: str, bad_value: str
    ):
        document = json.loads(populated.export_database())
        document["tables"][table][0][field] = bad_value
        before = self._snapshot(populated)

        for mode in ("replace", "upsert"):
            with pytest.raises(ValidationError):
                populated.import_database(json.dumps(document), mode=mode)

        assert self._snapshot(populated) == before
        assert len(populated.activities.list_for_user(user.id)) == 1

    def test_database_stats(self, populated: RecordStore):
        stats = populated.database_stats()
        assert stats["users"] == 1
        assert stats["plan_configs"] == 3
        assert stats["size_kb"] > 0
