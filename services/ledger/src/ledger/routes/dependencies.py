"""Request-scoped access to the clients built in the app lifespan."""

from typing import Callable

from fastapi import Request

from services.ledger.src.ledger.db.events_repository import EventsRepository
from services.ledger.src.ledger.domain.aggregation import AggregationFacade
from services.ledger.src.ledger.domain.events import AddressAggregate
from services.ledger.src.ledger.domain.risk import RiskMetricCalculator

AggregateReader = Callable[[str], AddressAggregate | None]


def get_calculator(request: Request) -> RiskMetricCalculator:
    return request.app.state.calculator


def get_facade(request: Request) -> AggregationFacade:
    return request.app.state.facade


def get_aggregate_reader(request: Request) -> AggregateReader:
    return request.app.state.read_aggregate


def get_events_repository(request: Request) -> EventsRepository:
    return request.app.state.events_repository
