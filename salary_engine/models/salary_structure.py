from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean
from sqlalchemy.sql import func
from salary_engine.database import Base

# Two decimal places keep fractional variable pay (percentage of CTC) exact
Amount = Numeric(14, 2)

class SalaryStructure(Base):
    __tablename__ = "salary_structures"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, unique=True, nullable=False)
    entry_mode = Column(String, default="guided")  # guided | manual

    annual_ctc = Column(Amount, nullable=False, default=0)
    variable_pay_type = Column(String, default="none")
    variable_pay_value = Column(Amount, default=0)
    working_days_per_month = Column(Integer, default=26)

    basic_annual = Column(Amount, default=0)
    hra_annual = Column(Amount, default=0)
    special_allowance_annual = Column(Amount, default=0)
    conveyance_annual = Column(Amount, default=0)
    medical_allowance_annual = Column(Amount, default=0)
    other_allowance_annual = Column(Amount, default=0)
    professional_tax_annual = Column(Amount, default=0)
    other_deduction_annual = Column(Amount, default=0)
    pf_annual = Column(Amount, default=0)  # employee + employer
    variable_pay_annual = Column(Amount, default=0)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
