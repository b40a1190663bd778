"""
Salary editor reconciliation.

One SalaryEditorSession backs one open structure editor. It owns the draft
(guided inputs and manual annual components), recomputes the preview after
input settles, and talks to the persistence collaborator on submit.

Recompute requests are numbered. A result is applied only if no newer request
was issued while it was in flight; older answers are dropped.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from salary_engine.core.config import PayrollRules, settings
from salary_engine.core.exceptions import AppException, FieldError, SalaryNotFoundError, SalaryValidationError
from salary_engine.core.money import ZERO, to_decimal
from salary_engine.schemas.salary import (
    AnnualComponentSet,
    BreakdownSource,
    CompensationBreakdown,
    GuidedInput,
    SalaryMode,
    VariablePayType,
)
from salary_engine.services.compensation import annualize, compute_variable_pay
from salary_engine.services.preview_client import default_preview_client
from salary_engine.services.resolver import CompensationResolver
from salary_engine.services.salary_store import (
    SalaryStoreClient,
    build_guided_payload,
    build_manual_payload,
    components_from_persisted,
)

logger = logging.getLogger(__name__)

VARIABLE_PAY_CAP_MESSAGE = "Variable pay cannot exceed 50% of CTC"


def validate_working_days(working_days: Any) -> List[FieldError]:
    if working_days is None or not 1 <= int(working_days) <= 31:
        return [FieldError("working_days_per_month", "Working days must be between 1 and 31")]
    return []


def validate_guided_input(guided: GuidedInput, rules: Optional[PayrollRules] = None) -> List[FieldError]:
    rules = rules or settings.rules
    errors: List[FieldError] = []
    ctc = guided.annual_ctc
    value = guided.variable_pay_value

    if ctc < 0:
        errors.append(FieldError("annual_ctc", "CTC must be a positive number"))
    elif ctc == 0:
        errors.append(FieldError("annual_ctc", "CTC is required"))

    if value < 0:
        errors.append(FieldError("variable_pay_value", "Variable pay cannot be negative"))
    elif guided.variable_pay_type == VariablePayType.PERCENTAGE and value > rules.max_variable_pay_percent:
        errors.append(FieldError("variable_pay_value", VARIABLE_PAY_CAP_MESSAGE))
    elif guided.variable_pay_type == VariablePayType.FIXED and value > ctc * rules.max_variable_pay_percent / 100:
        errors.append(FieldError("variable_pay_value", VARIABLE_PAY_CAP_MESSAGE))

    errors.extend(validate_working_days(guided.working_days_per_month))
    return errors


def validate_manual_input(components: AnnualComponentSet, declared_annual_ctc: Decimal = ZERO) -> List[FieldError]:
    errors = [
        FieldError(name, "Amount cannot be negative")
        for name, amount in components.money_fields().items()
        if amount < 0
    ]
    if declared_annual_ctc < 0:
        errors.append(FieldError("annual_ctc", "CTC must be a positive number"))
    if not errors and not components.has_any_component():
        errors.append(FieldError("components", "At least one salary component is required"))
    errors.extend(validate_working_days(components.working_days_per_month))
    return errors


def validate_submission(
    user_id: Optional[int],
    mode: SalaryMode,
    guided: GuidedInput,
    components: Optional[AnnualComponentSet] = None,
) -> None:
    """Submit-time checks. Raises SalaryValidationError listing every failing field."""
    errors: List[FieldError] = []
    if not user_id:
        errors.append(FieldError("user_id", "Employee is required"))

    if SalaryMode(mode) == SalaryMode.MANUAL:
        errors.extend(validate_manual_input(components or AnnualComponentSet(), guided.annual_ctc))
    else:
        errors.extend(validate_guided_input(guided))

    if errors:
        raise SalaryValidationError(errors)


def manual_ctc_difference(declared_annual_ctc: Any, components: AnnualComponentSet) -> Decimal:
    """Declared CTC minus the sum of every manually entered annual figure."""
    return to_decimal(declared_annual_ctc) - components.total()


class SalaryEditorSession:
    GUIDED_FIELDS = frozenset(GuidedInput.model_fields)
    MANUAL_FIELDS = frozenset(AnnualComponentSet.model_fields)

    def __init__(
        self,
        employee_id: Optional[int] = None,
        resolver: Optional[CompensationResolver] = None,
        store: Optional[SalaryStoreClient] = None,
        debounce_ms: Optional[int] = None,
    ):
        self.employee_id = employee_id
        self.resolver = resolver or CompensationResolver(default_preview_client())
        self.store = store
        debounce_ms = settings.recompute_debounce_ms if debounce_ms is None else debounce_ms
        self.debounce_seconds = debounce_ms / 1000

        self.mode = SalaryMode.GUIDED
        self.guided = GuidedInput(working_days_per_month=settings.rules.default_working_days)
        self.manual = AnnualComponentSet(working_days_per_month=settings.rules.default_working_days)
        self.breakdown: Optional[CompensationBreakdown] = None
        self.preview_errors: List[FieldError] = []
        self.existing_salary: Optional[Dict[str, Any]] = None

        self._generation = 0
        self._pending: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Draft
    # ------------------------------------------------------------------
    @property
    def generation(self) -> int:
        return self._generation

    @property
    def declared_annual_ctc(self) -> Decimal:
        return self.guided.annual_ctc

    @property
    def manual_ctc_difference(self) -> Optional[Decimal]:
        if self.mode != SalaryMode.MANUAL or self.declared_annual_ctc <= 0:
            return None
        return manual_ctc_difference(self.declared_annual_ctc, self.manual)

    def apply_changes(self, **fields: Any) -> None:
        """Mutate the draft without scheduling a recompute."""
        if "employee_id" in fields:
            self.employee_id = fields.pop("employee_id")
        unknown = set(fields) - self.GUIDED_FIELDS - self.MANUAL_FIELDS
        if unknown:
            raise ValueError(f"Unknown salary fields: {', '.join(sorted(unknown))}")

        guided_changes = {k: v for k, v in fields.items() if k in self.GUIDED_FIELDS}
        manual_changes = {k: v for k, v in fields.items() if k in self.MANUAL_FIELDS}
        if guided_changes:
            self.guided = GuidedInput.model_validate({**self.guided.model_dump(), **guided_changes})
        if manual_changes:
            self.manual = AnnualComponentSet.model_validate({**self.manual.model_dump(), **manual_changes})

    def update(self, **fields: Any) -> asyncio.Task:
        """Apply a user edit and schedule a debounced recompute."""
        self.apply_changes(**fields)
        return self.schedule_recompute()

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------
    def schedule_recompute(self) -> asyncio.Task:
        self.cancel_pending()
        self._pending = asyncio.get_running_loop().create_task(self._debounced_recompute())
        return self._pending

    def cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def _debounced_recompute(self) -> Optional[CompensationBreakdown]:
        await asyncio.sleep(self.debounce_seconds)
        return await self.recompute()

    async def _resolve_guided(self, guided: GuidedInput) -> CompensationBreakdown:
        # The remote call blocks on network I/O; keep it off the event loop
        return await asyncio.to_thread(
            self.resolver.resolve_from_ctc,
            guided.annual_ctc,
            guided.variable_pay_type,
            guided.variable_pay_value,
        )

    async def recompute(self) -> Optional[CompensationBreakdown]:
        self._generation += 1
        generation = self._generation
        mode, guided, manual = self.mode, self.guided, self.manual

        result: Optional[CompensationBreakdown] = None
        errors: List[FieldError] = []
        try:
            if mode == SalaryMode.MANUAL:
                result = self.resolver.resolve_from_components(manual, guided.annual_ctc)
            elif guided.annual_ctc > 0:
                result = await self._resolve_guided(guided)
        except SalaryValidationError as e:
            errors = e.errors

        if generation != self._generation:
            logger.debug("Discarding stale salary preview", extra={"generation": generation, "latest": self._generation})
            return None

        self.breakdown = result
        self.preview_errors = errors
        return result

    # ------------------------------------------------------------------
    # Mode switching
    # ------------------------------------------------------------------
    def _breakdown_matches_guided(self) -> bool:
        b = self.breakdown
        if b is None or b.source == BreakdownSource.MANUAL:
            return False
        return (
            b.annual_ctc == self.guided.annual_ctc
            and b.variable_pay_type == self.guided.variable_pay_type
            and b.variable_pay_annual == compute_variable_pay(
                self.guided.annual_ctc, self.guided.variable_pay_type, self.guided.variable_pay_value
            )
        )

    async def switch_mode(self, mode: SalaryMode) -> Optional[CompensationBreakdown]:
        mode = SalaryMode(mode)
        if mode == self.mode:
            return self.breakdown

        previous, self.mode = self.mode, mode
        self.cancel_pending()

        if previous == SalaryMode.GUIDED and mode == SalaryMode.MANUAL:
            source = self.breakdown if self._breakdown_matches_guided() else None
            if source is None and self.guided.annual_ctc > 0:
                try:
                    source = await self._resolve_guided(self.guided)
                except SalaryValidationError as e:
                    logger.info(f"Manual fields left as entered: {e.message}")
            if source is not None:
                self.manual = annualize(source, self.guided.working_days_per_month)

        return await self.recompute()

    # ------------------------------------------------------------------
    # Validation and persistence
    # ------------------------------------------------------------------
    def validate(self) -> None:
        validate_submission(self.employee_id, self.mode, self.guided, self.manual)

    def load_existing(self, persisted: Dict[str, Any]) -> None:
        """Adopt a persisted structure as the new baseline."""
        self.existing_salary = persisted
        ctc = persisted.get("annual_ctc")
        if ctc is None:
            ctc = persisted.get("package_ctc_annual")
        working_days = (
            persisted.get("working_days_per_month")
            or persisted.get("working_days")
            or settings.rules.default_working_days
        )
        self.guided = GuidedInput(
            annual_ctc=to_decimal(ctc),
            variable_pay_type=persisted.get("variable_pay_type") or VariablePayType.NONE,
            variable_pay_value=to_decimal(persisted.get("variable_pay_value")),
            working_days_per_month=int(working_days),
        )
        self.manual = components_from_persisted(persisted)
        if persisted.get("user_id") is not None:
            self.employee_id = int(persisted["user_id"])
        self.breakdown = None

    async def load(self, employee_id: int) -> Optional[Dict[str, Any]]:
        """Fetch the stored structure for an employee. A missing structure is not an error."""
        self.employee_id = employee_id
        if self.store is None:
            return None
        try:
            persisted = await asyncio.to_thread(self.store.fetch_salary, employee_id)
        except SalaryNotFoundError:
            logger.info(f"No salary structure yet for employee {employee_id}")
            self.existing_salary = None
            return None
        self.load_existing(persisted)
        await self.recompute()
        return persisted

    async def submit(self) -> Dict[str, Any]:
        """
        Validate and persist the draft.

        Validation failures never reach the network. A persistence failure is
        re-raised with the draft left untouched so it can be corrected and
        resubmitted.
        """
        if self.store is None:
            raise AppException("Salary store is not configured", status_code=503, error_code="SALARY_STORE_MISSING")
        self.validate()
        self.cancel_pending()

        if self.mode == SalaryMode.GUIDED and self.existing_salary:
            response = await asyncio.to_thread(
                self.store.update_ctc,
                self.employee_id,
                self.guided.annual_ctc,
                self.guided.variable_pay_type,
                self.guided.variable_pay_value,
            )
        elif self.mode == SalaryMode.MANUAL:
            payload = build_manual_payload(self.employee_id, self.manual)
            response = await asyncio.to_thread(self.store.create_salary, payload)
        else:
            payload = build_guided_payload(self.employee_id, self.guided)
            response = await asyncio.to_thread(self.store.create_salary, payload)

        logger.info(f"Salary structure saved for employee {self.employee_id}", extra={"mode": self.mode.value})
        self.load_existing(response)
        await self.recompute()
        return response

    def close(self) -> None:
        """Drop pending work and the unsaved draft."""
        self.cancel_pending()
        self._generation += 1
        self.breakdown = None
        self.preview_errors = []
