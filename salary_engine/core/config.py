import os
import logging
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

class PayrollRules(BaseModel):
    """Statutory-style split used by the local salary calculator."""
    basic_ratio: Decimal = Decimal("0.5")
    hra_ratio: Decimal = Decimal("0.5")
    pf_ratio: Decimal = Decimal("0.12")
    professional_tax_annual: Decimal = Decimal("2400")
    max_variable_pay_percent: Decimal = Decimal("50")
    default_working_days: int = 26

class PreviewSettings(BaseModel):
    # Empty URL disables the remote calculator; the local formulas are used alone.
    url: Optional[str] = Field(default=os.getenv("SALARY_PREVIEW_URL") or None)
    timeout_seconds: float = Field(default=float(os.getenv("SALARY_PREVIEW_TIMEOUT", "10")))

class SalaryApiSettings(BaseModel):
    url: Optional[str] = Field(default=os.getenv("SALARY_API_URL") or None)
    token: Optional[str] = Field(default=os.getenv("SALARY_API_TOKEN") or None)
    timeout_seconds: float = Field(default=float(os.getenv("SALARY_API_TIMEOUT", "30")))
    fetch_attempts: int = int(os.getenv("SALARY_API_FETCH_ATTEMPTS", "3"))

class Config(BaseModel):
    app_name: str = "Salary Structure Engine"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"
    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./salary.db")

    # Collaborators
    preview: PreviewSettings = PreviewSettings()
    salary_api: SalaryApiSettings = SalaryApiSettings()

    # Editor session
    recompute_debounce_ms: int = int(os.getenv("SALARY_RECOMPUTE_DEBOUNCE_MS", "400"))

    rules: PayrollRules = PayrollRules()

settings = Config()

_logger = logging.getLogger(__name__)
if settings.environment == "development" and not settings.preview.url:
    _logger.info("SALARY_PREVIEW_URL not set; salary previews use local formulas only.")
