import logging
from typing import Any, Optional

from salary_engine.core.exceptions import PreviewServiceError
from salary_engine.schemas.salary import AnnualComponentSet, CompensationBreakdown, VariablePayType
from salary_engine.services import compensation
from salary_engine.services.preview_client import PreviewClient, normalize_preview_response

logger = logging.getLogger(__name__)


class CompensationResolver:
    """
    Resolves salary structures.

    Guided resolution asks the remote preview calculator first and falls back
    to the local formulas when it is not configured or fails. Manual
    resolution is always local.
    """

    def __init__(self, preview_client: Optional[PreviewClient] = None):
        self.preview_client = preview_client

    def resolve_from_ctc(
        self,
        annual_ctc: Any,
        variable_pay_type: VariablePayType = VariablePayType.NONE,
        variable_pay_value: Any = 0,
    ) -> CompensationBreakdown:
        # Input problems surface here regardless of which path answers
        local = compensation.resolve_from_ctc_local(annual_ctc, variable_pay_type, variable_pay_value)
        if self.preview_client is None:
            return local

        try:
            payload = self.preview_client.calculate(annual_ctc, variable_pay_type, variable_pay_value)
            return normalize_preview_response(payload, annual_ctc, variable_pay_type, variable_pay_value)
        except PreviewServiceError as e:
            logger.warning(
                f"Remote salary preview failed, using local formulas: {e.message}",
                extra={"code": e.error_code},
            )
            return local

    def resolve_from_components(
        self,
        components: AnnualComponentSet,
        declared_annual_ctc: Any = None,
    ) -> CompensationBreakdown:
        return compensation.resolve_from_components(components, declared_annual_ctc)
