import asyncio
import time
from decimal import Decimal

import pytest

from salary_engine.core.exceptions import (
    AppException,
    SalaryNotFoundError,
    SalaryPersistenceError,
    SalaryValidationError,
)
from salary_engine.schemas.salary import (
    AnnualComponentSet,
    BreakdownSource,
    GuidedInput,
    SalaryMode,
    VariablePayType,
)
from salary_engine.services.compensation import annualize, resolve_from_ctc_local
from salary_engine.services.reconciliation import (
    VARIABLE_PAY_CAP_MESSAGE,
    SalaryEditorSession,
    manual_ctc_difference,
    validate_guided_input,
    validate_submission,
)
from salary_engine.services.resolver import CompensationResolver


class CountingResolver(CompensationResolver):
    """Local-only resolver that records guided calls and can stall on chosen CTCs."""

    def __init__(self, slow_ctcs=(), delay=0.2):
        super().__init__()
        self.calls = []
        self.slow_ctcs = {Decimal(c) for c in slow_ctcs}
        self.delay = delay

    def resolve_from_ctc(self, annual_ctc, variable_pay_type=VariablePayType.NONE, variable_pay_value=0):
        self.calls.append(annual_ctc)
        if annual_ctc in self.slow_ctcs:
            time.sleep(self.delay)
        return super().resolve_from_ctc(annual_ctc, variable_pay_type, variable_pay_value)


def persisted_structure(user_id, ctc, variable_pay_type=VariablePayType.NONE, variable_pay_value=0):
    components = annualize(resolve_from_ctc_local(ctc, variable_pay_type, variable_pay_value))
    return {
        "id": 1,
        "user_id": user_id,
        "annual_ctc": ctc,
        "variable_pay_type": VariablePayType(variable_pay_type).value,
        "variable_pay_value": variable_pay_value,
        **components.model_dump(mode="json"),
    }


class FakeStore:
    def __init__(self, existing=None, error=None):
        self.existing = existing
        self.error = error
        self.created = []
        self.updated = []

    def create_salary(self, payload):
        if self.error:
            raise self.error
        self.created.append(payload)
        if "basic_annual" in payload:
            return {**payload, "annual_ctc": 1200000}
        return persisted_structure(payload["user_id"], payload["annual_ctc"],
                                   payload["variable_pay_type"], payload["variable_pay_value"])

    def update_ctc(self, user_id, annual_ctc, variable_pay_type, variable_pay_value):
        if self.error:
            raise self.error
        self.updated.append((user_id, annual_ctc, variable_pay_type, variable_pay_value))
        return persisted_structure(user_id, annual_ctc, variable_pay_type, variable_pay_value)

    def fetch_salary(self, user_id):
        if self.existing is None:
            raise SalaryNotFoundError(user_id)
        return self.existing


def make_session(**kwargs):
    kwargs.setdefault("resolver", CountingResolver())
    kwargs.setdefault("debounce_ms", 0)
    return SalaryEditorSession(**kwargs)


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def test_percentage_variable_pay_over_cap_is_rejected():
    errors = validate_guided_input(GuidedInput(
        annual_ctc=1200000, variable_pay_type=VariablePayType.PERCENTAGE, variable_pay_value=60,
    ))
    assert [(e.field, e.message) for e in errors] == [("variable_pay_value", VARIABLE_PAY_CAP_MESSAGE)]


def test_percentage_variable_pay_at_cap_is_accepted():
    guided = GuidedInput(annual_ctc=1200000, variable_pay_type=VariablePayType.PERCENTAGE, variable_pay_value=50)
    assert validate_guided_input(guided) == []


def test_fixed_variable_pay_over_half_of_ctc_is_rejected():
    over = GuidedInput(annual_ctc=1000000, variable_pay_type=VariablePayType.FIXED, variable_pay_value=600000)
    at_cap = GuidedInput(annual_ctc=1000000, variable_pay_type=VariablePayType.FIXED, variable_pay_value=500000)
    assert validate_guided_input(over)[0].message == VARIABLE_PAY_CAP_MESSAGE
    assert validate_guided_input(at_cap) == []


@pytest.mark.parametrize("ctc, message", [(0, "CTC is required"), (-5, "CTC must be a positive number")])
def test_guided_ctc_must_be_positive(ctc, message):
    errors = validate_guided_input(GuidedInput(annual_ctc=ctc))
    assert [e.message for e in errors if e.field == "annual_ctc"] == [message]


@pytest.mark.parametrize("days", [0, 32])
def test_working_days_out_of_range(days):
    with pytest.raises(SalaryValidationError) as exc:
        validate_submission(1, SalaryMode.GUIDED, GuidedInput(annual_ctc=1200000, working_days_per_month=days))
    assert exc.value.messages_for("working_days_per_month") == ["Working days must be between 1 and 31"]


@pytest.mark.parametrize("days", [1, 31])
def test_working_days_bounds_are_inclusive(days):
    validate_submission(1, SalaryMode.GUIDED, GuidedInput(annual_ctc=1200000, working_days_per_month=days))


def test_missing_employee_is_rejected():
    with pytest.raises(SalaryValidationError) as exc:
        validate_submission(None, SalaryMode.GUIDED, GuidedInput(annual_ctc=1200000))
    assert exc.value.messages_for("user_id") == ["Employee is required"]


def test_manual_mode_needs_at_least_one_component():
    with pytest.raises(SalaryValidationError) as exc:
        validate_submission(1, SalaryMode.MANUAL, GuidedInput(), AnnualComponentSet())
    assert exc.value.messages_for("components") == ["At least one salary component is required"]


def test_manual_mode_rejects_negative_component():
    with pytest.raises(SalaryValidationError) as exc:
        validate_submission(1, SalaryMode.MANUAL, GuidedInput(), AnnualComponentSet(basic_annual=-1))
    assert exc.value.messages_for("basic_annual") == ["Amount cannot be negative"]


def test_manual_mode_ignores_guided_cap():
    guided = GuidedInput(annual_ctc=100, variable_pay_type=VariablePayType.PERCENTAGE, variable_pay_value=90)
    validate_submission(1, SalaryMode.MANUAL, guided, AnnualComponentSet(basic_annual=600000))


def test_all_failures_are_reported_together():
    guided = GuidedInput(variable_pay_type=VariablePayType.PERCENTAGE, variable_pay_value=70, working_days_per_month=40)
    with pytest.raises(SalaryValidationError) as exc:
        validate_submission(None, SalaryMode.GUIDED, guided)
    fields = {e.field for e in exc.value.errors}
    assert fields == {"user_id", "annual_ctc", "variable_pay_value", "working_days_per_month"}


# ----------------------------------------------------------------------
# Drift and mode switching
# ----------------------------------------------------------------------

def test_manual_ctc_difference_sums_every_component():
    components = AnnualComponentSet(
        basic_annual=600000, hra_annual=300000, special_allowance_annual=228000,
        pf_annual=144000, professional_tax_annual=2400,
    )
    assert manual_ctc_difference(1200000, components) == Decimal("-74400")


def test_switch_to_manual_populates_components_from_guided():
    async def scenario():
        session = make_session(employee_id=7)
        session.apply_changes(annual_ctc=1200000)
        await session.recompute()
        await session.switch_mode(SalaryMode.MANUAL)
        return session

    session = asyncio.run(scenario())

    assert session.mode == SalaryMode.MANUAL
    assert session.manual.basic_annual == 600000
    assert session.manual.hra_annual == 300000
    assert session.manual.pf_annual == 144000
    assert session.manual.special_allowance_annual == 228000
    assert session.manual.professional_tax_annual == 2400
    assert session.breakdown.source == BreakdownSource.MANUAL
    assert session.breakdown.monthly_in_hand == 87800
    assert session.manual_ctc_difference == Decimal("-74400")


def test_switch_to_manual_reuses_current_breakdown():
    async def scenario(resolver):
        session = make_session(resolver=resolver)
        session.apply_changes(annual_ctc=1200000)
        await session.recompute()
        await session.switch_mode(SalaryMode.MANUAL)

    resolver = CountingResolver()
    asyncio.run(scenario(resolver))
    assert len(resolver.calls) == 1


def test_switch_to_manual_resolves_when_preview_is_stale():
    async def scenario(resolver):
        session = make_session(resolver=resolver)
        session.apply_changes(annual_ctc=1200000)
        # no recompute has run for this CTC yet
        await session.switch_mode(SalaryMode.MANUAL)
        return session

    resolver = CountingResolver()
    session = asyncio.run(scenario(resolver))
    assert resolver.calls == [Decimal("1200000")]
    assert session.manual.basic_annual == 600000


def test_switch_without_ctc_keeps_manual_fields():
    async def scenario():
        session = make_session()
        session.apply_changes(basic_annual=10000)
        await session.switch_mode(SalaryMode.MANUAL)
        return session

    session = asyncio.run(scenario())
    assert session.manual.basic_annual == 10000
    assert session.manual_ctc_difference is None


def test_difference_is_only_reported_in_manual_mode():
    session = make_session()
    session.apply_changes(annual_ctc=1200000, basic_annual=100)
    assert session.manual_ctc_difference is None


# ----------------------------------------------------------------------
# Debounce and stale responses
# ----------------------------------------------------------------------

def test_quick_edits_trigger_a_single_recompute():
    async def scenario(resolver):
        session = make_session(resolver=resolver, debounce_ms=50)
        first = session.update(annual_ctc=1000000)
        second = session.update(annual_ctc=1200000)
        await second
        return session, first

    resolver = CountingResolver()
    session, first = asyncio.run(scenario(resolver))

    assert first.cancelled()
    assert resolver.calls == [Decimal("1200000")]
    assert session.breakdown.annual_ctc == 1200000


def test_stale_result_is_discarded():
    async def scenario(resolver):
        session = make_session(resolver=resolver)
        session.apply_changes(annual_ctc=1000000)
        slow = asyncio.create_task(session.recompute())
        await asyncio.sleep(0)

        session.apply_changes(annual_ctc=1200000)
        latest = await session.recompute()
        stale = await slow
        return session, latest, stale

    resolver = CountingResolver(slow_ctcs=[1000000])
    session, latest, stale = asyncio.run(scenario(resolver))

    assert stale is None
    assert latest.annual_ctc == 1200000
    assert session.breakdown.annual_ctc == 1200000
    assert session.generation == 2


def test_recompute_records_resolver_rejection():
    async def scenario():
        session = make_session()
        session.apply_changes(annual_ctc=100000, variable_pay_type="fixed", variable_pay_value=200000)
        await session.recompute()
        return session

    session = asyncio.run(scenario())
    assert session.breakdown is None
    assert session.preview_errors[0].field == "variable_pay_value"


def test_recompute_without_ctc_clears_preview():
    async def scenario():
        session = make_session()
        return await session.recompute(), session

    result, session = asyncio.run(scenario())
    assert result is None
    assert session.preview_errors == []


def test_unknown_field_is_rejected():
    with pytest.raises(ValueError):
        make_session().apply_changes(bonus=5)


def test_close_drops_pending_recompute():
    async def scenario(resolver):
        session = make_session(resolver=resolver, debounce_ms=50)
        task = session.update(annual_ctc=1200000)
        session.close()
        await asyncio.sleep(0.1)
        return session, task

    resolver = CountingResolver()
    session, task = asyncio.run(scenario(resolver))
    assert task.cancelled()
    assert resolver.calls == []
    assert session.breakdown is None


# ----------------------------------------------------------------------
# Load and submit
# ----------------------------------------------------------------------

def test_load_without_existing_structure():
    session = make_session(store=FakeStore())
    assert asyncio.run(session.load(3)) is None
    assert session.existing_salary is None
    assert session.employee_id == 3


def test_load_adopts_persisted_structure():
    store = FakeStore(existing=persisted_structure(3, 1200000))
    session = make_session(store=store)
    asyncio.run(session.load(3))

    assert session.guided.annual_ctc == 1200000
    assert session.manual.basic_annual == 600000
    assert session.breakdown.monthly_in_hand == 87800


def test_submit_guided_creates_structure():
    store = FakeStore()
    session = make_session(employee_id=5, store=store)
    session.apply_changes(annual_ctc=1200000, variable_pay_type="percentage", variable_pay_value=10)

    response = asyncio.run(session.submit())

    assert store.created == [{
        "user_id": 5,
        "annual_ctc": 1200000,
        "variable_pay_type": "percentage",
        "variable_pay_value": 10,
        "working_days": 26,
    }]
    assert store.updated == []
    assert session.existing_salary == response
    assert session.breakdown.variable_pay_annual == 120000


def test_submit_guided_with_baseline_updates_ctc():
    store = FakeStore(existing=persisted_structure(5, 1000000))

    async def scenario():
        session = make_session(store=store)
        await session.load(5)
        session.apply_changes(annual_ctc=1500000)
        await session.submit()
        return session

    session = asyncio.run(scenario())
    assert store.updated == [(5, Decimal("1500000"), VariablePayType.NONE, Decimal("0"))]
    assert store.created == []
    assert session.guided.annual_ctc == 1500000
    assert session.manual.basic_annual == 750000


def test_submit_manual_sends_components():
    store = FakeStore()

    async def scenario():
        session = make_session(employee_id=9, store=store)
        await session.switch_mode(SalaryMode.MANUAL)
        session.apply_changes(basic_annual=600000, hra_annual=300000, variable_pay_annual=50000)
        await session.submit()

    asyncio.run(scenario())
    payload = store.created[0]
    assert payload["user_id"] == 9
    assert payload["basic_annual"] == 600000
    assert payload["variable_pay"] == 50000
    assert "variable_pay_annual" not in payload
    assert payload["working_days_per_month"] == 26


def test_submit_validation_failure_never_reaches_store():
    store = FakeStore()
    session = make_session(store=store)
    session.apply_changes(annual_ctc=1200000)

    with pytest.raises(SalaryValidationError):
        asyncio.run(session.submit())
    assert store.created == [] and store.updated == []


def test_submit_persistence_error_keeps_draft():
    error = SalaryPersistenceError("CTC must be at least the statutory minimum", field="annual_ctc", upstream_status=400)
    session = make_session(employee_id=5, store=FakeStore(error=error))
    session.apply_changes(annual_ctc=1200000)

    with pytest.raises(SalaryPersistenceError) as exc:
        asyncio.run(session.submit())

    assert exc.value.field == "annual_ctc"
    assert session.guided.annual_ctc == 1200000
    assert session.existing_salary is None


def test_submit_without_store_is_an_error():
    session = make_session(employee_id=5)
    session.apply_changes(annual_ctc=1200000)
    with pytest.raises(AppException) as exc:
        asyncio.run(session.submit())
    assert exc.value.error_code == "SALARY_STORE_MISSING"
