"""Projection store - the canonical, currency-normalized item set of each plan"""

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Union

from sqlalchemy.orm import Session

from finplan_engine.domain.currency import CurrencyConverter
from finplan_engine.domain.exceptions import FieldError, NotFoundError, RateNotFoundError, ValidationError
from finplan_engine.domain.models import ProjectionItem, Scenario
from finplan_engine.domain.projections import RecurringOccurrence, expand_recurring, projection_warnings
from finplan_engine.infrastructure.database.repositories import CurrencyRepository, ProjectionRepository
from finplan_engine.infrastructure.database.session import transaction
from finplan_engine.infrastructure.observability.metrics import record_conversion_failure, record_projection_write
from finplan_engine.services.plans import PlanGateway, require_plan
from finplan_engine.services.schemas import CreateProjectionRequest, UpdateProjectionRequest, collect_errors, parse_request

logger = logging.getLogger(__name__)


class PlanLocks:
    """One lock per plan; writes to the same plan's item set are serialized"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[uuid.UUID, threading.Lock] = {}

    def for_plan(self, plan_id: uuid.UUID) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(plan_id, threading.Lock())

    @contextmanager
    def hold(self, plan_id: uuid.UUID) -> Iterator[None]:
        lock = self.for_plan(plan_id)
        with lock:
            yield


plan_locks = PlanLocks()


class ProjectionStore:
    """
    Create, read, update and soft-delete projection items.

    Every write converts the amount into the plan's reporting currency at
    the rate effective on the item's period and commits under the plan's
    lock; a missing rate fails the whole write and nothing is stored.
    """

    def __init__(
        self,
        db: Session,
        converter: CurrencyConverter,
        plans: PlanGateway,
        locks: PlanLocks = plan_locks,
    ):
        self.db = db
        self.converter = converter
        self.plans = plans
        self.locks = locks
        self.items = ProjectionRepository(db)
        self.currencies = CurrencyRepository(db)

    def _check_currency(self, code: str) -> None:
        currency = self.currencies.get(code)
        if currency is None or not currency.is_active:
            raise ValidationError([FieldError("currency_code", f"unknown or inactive currency '{code}'")])

    def _normalize(self, item: ProjectionItem, reporting_currency: str) -> ProjectionItem:
        try:
            conversion = self.converter.convert_detailed(
                item.amount, item.currency_code, reporting_currency, item.period.reference_date
            )
        except RateNotFoundError:
            record_conversion_failure()
            logger.warning(
                "Projection write rejected: no exchange rate",
                extra={"plan_id": str(item.plan_id), "currency_code": item.currency_code, "period": item.period.label},
            )
            raise
        return replace(item, base_amount=conversion.amount, exchange_rate=conversion.rate)

    @contextmanager
    def _write(self, plan_id: uuid.UUID) -> Iterator[None]:
        """Plan lock plus transaction"""
        with self.locks.hold(plan_id), transaction(self.db):
            # Rows cached before the lock was taken may predate another writer's commit
            self.db.expire_all()
            yield

    def create(self, payload: Union[CreateProjectionRequest, Dict[str, Any]], actor: str) -> ProjectionItem:
        request = payload if isinstance(payload, CreateProjectionRequest) else parse_request(CreateProjectionRequest, payload)
        plan = require_plan(self.plans, request.plan_id)
        currency_code = request.currency_code.upper()
        self._check_currency(currency_code)

        now = datetime.now(timezone.utc)
        draft = ProjectionItem(
            plan_id=request.plan_id,
            name=request.name,
            description=request.description,
            projection_type=request.projection_type,
            scenario=request.scenario,
            year=request.year,
            month=request.month,
            amount=request.amount,
            currency_code=currency_code,
            base_amount=request.amount,
            exchange_rate=Decimal("1"),
            category=request.category,
            sub_category=request.sub_category,
            is_recurring=request.is_recurring,
            frequency=request.frequency,
            growth_rate=request.growth_rate,
            assumptions=request.assumptions,
            notes=request.notes,
            created_at=now,
            updated_at=now,
            created_by=actor,
            updated_by=actor,
        )

        with self._write(plan.plan_id):
            item = self.items.add(self._normalize(draft, plan.reporting_currency))

        record_projection_write("create")
        logger.info(
            "Projection created",
            extra={"plan_id": str(item.plan_id), "item_id": str(item.id), "scenario": item.scenario.value, "actor": actor},
        )
        return item

    def check(self, payload: Dict[str, Any]) -> List[FieldError]:
        """Every field problem a create would reject, without writing anything"""
        errors = collect_errors(CreateProjectionRequest, payload)
        code = payload.get("currency_code")
        if isinstance(code, str):
            currency = self.currencies.get(code.upper())
            if currency is None or not currency.is_active:
                errors.append(FieldError("currency_code", f"unknown or inactive currency '{code}'"))
        return errors

    def get(self, item_id: uuid.UUID) -> ProjectionItem:
        """
        Raises:
            NotFoundError: no live item with this id
        """
        item = self.items.get(item_id)
        if item is None:
            raise NotFoundError("ProjectionItem", item_id)
        return item

    def list_by_plan(self, plan_id: uuid.UUID, **filters) -> List[ProjectionItem]:
        require_plan(self.plans, plan_id)
        return self.items.list_by_plan(plan_id, **filters)

    def list_by_plan_and_scenario(self, plan_id: uuid.UUID, scenario: Scenario) -> List[ProjectionItem]:
        return self.items.list_by_plan_and_scenario(plan_id, scenario)

    def update(
        self,
        item_id: uuid.UUID,
        payload: Union[UpdateProjectionRequest, Dict[str, Any]],
        actor: str,
    ) -> ProjectionItem:
        """Apply the given fields and re-derive base_amount from the merged item"""
        request = payload if isinstance(payload, UpdateProjectionRequest) else parse_request(UpdateProjectionRequest, payload)
        changes = {
            name: value
            for name, value in request.model_dump(exclude_unset=True).items()
            if value is not None or name == "frequency"
        }
        if "currency_code" in changes:
            changes["currency_code"] = changes["currency_code"].upper()
            self._check_currency(changes["currency_code"])

        plan = require_plan(self.plans, self.get(item_id).plan_id)
        with self._write(plan.plan_id):
            # Re-read under the lock so concurrent updates are not lost
            merged = replace(self.get(item_id), **changes, updated_at=datetime.now(timezone.utc), updated_by=actor)
            if merged.is_recurring and merged.frequency is None:
                raise ValidationError([FieldError("frequency", "a recurring projection needs a frequency")])
            item = self.items.save(self._normalize(merged, plan.reporting_currency))

        record_projection_write("update")
        logger.info("Projection updated", extra={"plan_id": str(item.plan_id), "item_id": str(item.id), "actor": actor})
        return item

    def delete(self, item_id: uuid.UUID, actor: str) -> None:
        current = self.get(item_id)
        with self._write(current.plan_id):
            self.items.soft_delete(item_id, actor)

        record_projection_write("delete")
        logger.info("Projection deleted", extra={"plan_id": str(current.plan_id), "item_id": str(item_id), "actor": actor})

    def recurring_series(self, item_id: uuid.UUID, occurrences: int) -> List[RecurringOccurrence]:
        if occurrences < 1:
            raise ValidationError([FieldError("occurrences", "must be at least 1")])
        return expand_recurring(self.get(item_id), occurrences)

    def warnings(self, plan_id: uuid.UUID, scenario: Scenario) -> List[str]:
        require_plan(self.plans, plan_id)
        return projection_warnings(self.items.list_by_plan_and_scenario(plan_id, scenario))

