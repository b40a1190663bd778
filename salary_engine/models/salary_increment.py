from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime
from sqlalchemy.sql import func
from salary_engine.database import Base

class SalaryIncrement(Base):
    """One applied change to an employee's annual CTC."""
    __tablename__ = "salary_increments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)

    previous_salary = Column(Numeric(14, 2), nullable=False)
    increment_amount = Column(Numeric(14, 2), nullable=False)  # negative for a reduction
    increment_percentage = Column(Numeric(7, 2), nullable=False)
    new_salary = Column(Numeric(14, 2), nullable=False)

    effective_date = Column(Date, nullable=False)
    reason = Column(String(500), default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
