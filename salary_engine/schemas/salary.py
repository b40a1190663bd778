from pydantic import BaseModel, ConfigDict, Field, computed_field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from salary_engine.core.money import Money, ZERO, monthly


class VariablePayType(str, Enum):
    NONE = "none"
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class SalaryMode(str, Enum):
    GUIDED = "guided"
    MANUAL = "manual"


class BreakdownSource(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    MANUAL = "manual"


class GuidedInput(BaseModel):
    annual_ctc: Money = ZERO
    variable_pay_type: VariablePayType = VariablePayType.NONE
    variable_pay_value: Money = ZERO
    working_days_per_month: int = 26


COMPONENT_FIELDS = (
    "basic_annual",
    "hra_annual",
    "special_allowance_annual",
    "conveyance_annual",
    "medical_allowance_annual",
    "other_allowance_annual",
    "professional_tax_annual",
    "other_deduction_annual",
    "pf_annual",
    "variable_pay_annual",
)


class AnnualComponentSet(BaseModel):
    """Manual-entry figures. All annual; pf_annual is the employee + employer total."""
    basic_annual: Money = ZERO
    hra_annual: Money = ZERO
    special_allowance_annual: Money = ZERO
    conveyance_annual: Money = ZERO
    medical_allowance_annual: Money = ZERO
    other_allowance_annual: Money = ZERO
    professional_tax_annual: Money = ZERO
    other_deduction_annual: Money = ZERO
    pf_annual: Money = ZERO
    variable_pay_annual: Money = ZERO
    working_days_per_month: int = 26

    def money_fields(self) -> dict:
        return {name: getattr(self, name) for name in COMPONENT_FIELDS}

    def total(self) -> Decimal:
        return sum(self.money_fields().values(), ZERO)

    def has_any_component(self) -> bool:
        return any(v > 0 for v in self.money_fields().values())


class CompensationBreakdown(BaseModel):
    """
    Resolved salary structure.

    Annual figures are the stored state. Every monthly figure is derived from
    its annual counterpart with round(annual / 12), so the two views cannot
    drift apart.
    """
    model_config = ConfigDict(frozen=True)

    annual_ctc: Money
    calculated_annual_ctc: Money = ZERO
    fixed_ctc: Money = ZERO
    variable_pay_type: VariablePayType = VariablePayType.NONE
    variable_pay_value: Money = ZERO
    source: BreakdownSource = BreakdownSource.LOCAL

    basic_annual: Money = ZERO
    hra_annual: Money = ZERO
    special_allowance_annual: Money = ZERO
    conveyance_annual: Money = ZERO
    medical_allowance_annual: Money = ZERO
    other_allowance_annual: Money = ZERO
    # One side of PF; employer share always equals the employee share
    pf_one_side_annual: Money = ZERO
    professional_tax_annual: Money = ZERO
    other_deduction_annual: Money = ZERO
    variable_pay_annual: Money = ZERO

    @computed_field
    @property
    def pf_annual(self) -> Money:
        return self.pf_one_side_annual * 2

    @computed_field
    @property
    def monthly_basic(self) -> Money:
        return monthly(self.basic_annual)

    @computed_field
    @property
    def monthly_hra(self) -> Money:
        return monthly(self.hra_annual)

    @computed_field
    @property
    def monthly_special_allowance(self) -> Money:
        return monthly(self.special_allowance_annual)

    @computed_field
    @property
    def monthly_conveyance(self) -> Money:
        return monthly(self.conveyance_annual)

    @computed_field
    @property
    def monthly_medical_allowance(self) -> Money:
        return monthly(self.medical_allowance_annual)

    @computed_field
    @property
    def monthly_other_allowance(self) -> Money:
        return monthly(self.other_allowance_annual)

    @computed_field
    @property
    def monthly_pf_employee(self) -> Money:
        return monthly(self.pf_one_side_annual)

    @computed_field
    @property
    def monthly_pf_employer(self) -> Money:
        return monthly(self.pf_one_side_annual)

    @computed_field
    @property
    def monthly_professional_tax(self) -> Money:
        return monthly(self.professional_tax_annual)

    @computed_field
    @property
    def monthly_other_deduction(self) -> Money:
        return monthly(self.other_deduction_annual)

    @computed_field
    @property
    def monthly_variable_pay(self) -> Money:
        return monthly(self.variable_pay_annual)

    @computed_field
    @property
    def monthly_gross(self) -> Money:
        return (
            self.monthly_basic
            + self.monthly_hra
            + self.monthly_special_allowance
            + self.monthly_medical_allowance
            + self.monthly_conveyance
            + self.monthly_other_allowance
        )

    @computed_field
    @property
    def monthly_deductions(self) -> Money:
        return self.monthly_pf_employee + self.monthly_professional_tax + self.monthly_other_deduction

    @computed_field
    @property
    def monthly_in_hand(self) -> Money:
        return self.monthly_gross - self.monthly_deductions


class ManualResolveRequest(BaseModel):
    components: AnnualComponentSet
    annual_ctc: Optional[Money] = None


class ManualResolveResponse(BaseModel):
    breakdown: CompensationBreakdown
    manual_ctc_difference: Optional[Money] = None


class SalaryValidateRequest(BaseModel):
    user_id: Optional[int] = None
    mode: SalaryMode = SalaryMode.GUIDED
    guided: GuidedInput = Field(default_factory=GuidedInput)
    components: Optional[AnnualComponentSet] = None


class ManualSalaryCreate(AnnualComponentSet):
    user_id: int
    variable_pay: Optional[Money] = None


class GuidedSalaryCreate(BaseModel):
    user_id: int
    annual_ctc: Optional[Money] = None
    package_ctc_annual: Optional[Money] = None
    variable_pay_type: VariablePayType = VariablePayType.NONE
    variable_pay_value: Money = ZERO
    working_days: Optional[int] = None
    working_days_per_month: Optional[int] = None

    def resolved_ctc(self) -> Decimal:
        if self.annual_ctc is not None:
            return self.annual_ctc
        return self.package_ctc_annual if self.package_ctc_annual is not None else ZERO

    def resolved_working_days(self) -> int:
        # 0 is an answer, not a missing value; the range check rejects it later
        if self.working_days is not None:
            return self.working_days
        if self.working_days_per_month is not None:
            return self.working_days_per_month
        return 26


class UpdateCtcRequest(BaseModel):
    user_id: Optional[int] = None
    package_ctc_annual: Money
    variable_pay_type: VariablePayType = VariablePayType.NONE
    variable_pay_value: Money = ZERO


class IncrementPreviewRequest(BaseModel):
    current_ctc: Money
    increment_amount: Optional[Money] = None
    increment_percentage: Optional[Money] = None
    new_ctc: Optional[Money] = None


class IncrementPreview(BaseModel):
    previous_ctc: Money
    increment_amount: Money
    increment_percentage: Money
    new_ctc: Money


class IncrementCreate(BaseModel):
    """
    Apply an increment to a stored structure.

    Give one of increment_amount, increment_percentage or new_salary; the
    other figures are derived from the stored CTC. previous_salary, when
    sent, must match the stored CTC.
    """
    user_id: int
    previous_salary: Optional[Money] = None
    increment_amount: Optional[Money] = None
    increment_percentage: Optional[Money] = None
    new_salary: Optional[Money] = None
    effective_date: date
    reason: str = Field(default="", max_length=500)
