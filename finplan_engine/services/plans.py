"""Plan lookup owned by the business-plan module"""

import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from finplan_engine.domain.exceptions import NotFoundError


@dataclass(frozen=True)
class PlanInfo:
    plan_id: uuid.UUID
    reporting_currency: str


class PlanGateway(Protocol):
    """Existence check and reporting currency of a business plan"""

    def get_plan(self, plan_id: uuid.UUID) -> Optional[PlanInfo]:
        ...


class InMemoryPlanGateway:
    """Plan registry for embedding the engine without the plan module"""

    def __init__(self):
        self._plans: Dict[uuid.UUID, PlanInfo] = {}

    def register(self, plan_id: uuid.UUID, reporting_currency: str) -> PlanInfo:
        info = PlanInfo(plan_id, reporting_currency.upper())
        self._plans[plan_id] = info
        return info

    def get_plan(self, plan_id: uuid.UUID) -> Optional[PlanInfo]:
        return self._plans.get(plan_id)


def require_plan(gateway: PlanGateway, plan_id: uuid.UUID) -> PlanInfo:
    """
    Raises:
        NotFoundError: the plan does not exist
    """
    plan = gateway.get_plan(plan_id)
    if plan is None:
        raise NotFoundError("BusinessPlan", plan_id)
    return plan
