"""Remote-callable operations and their argument schemas."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

LIST_OPERATIONS = "list_operations"


class Operation(Enum):
    """Operations a client may call."""

    SEARCH_LOCATION = "search_location"
    GET_COMPLETE_FORECAST = "get_complete_forecast"

    def __str__(self) -> str:
        return self.value


class WeatherService(Protocol):
    """The external collaborator behind the operations.

    Implementations raise ``GatewayError.unavailable()`` (or anything else)
    on failure; the dispatcher never forwards the detail to clients.
    """

    async def search_location(self, city: str) -> list[dict[str, Any]]: ...

    async def get_complete_forecast(self, latitude: float, longitude: float) -> dict[str, Any]: ...


class _Arguments(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)


class SearchLocationArguments(_Arguments):
    city: str = Field(min_length=1, description="The city name to search for")


class GetCompleteForecastArguments(_Arguments):
    latitude: float = Field(ge=-90, le=90, allow_inf_nan=False, description="Latitude coordinate (-90 to 90)")
    longitude: float = Field(
        ge=-180, le=180, allow_inf_nan=False, description="Longitude coordinate (-180 to 180)"
    )


Handler = Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True)
class OperationSpec:
    """Catalog entry: schema, description and handler of one operation."""

    operation: Operation
    description: str
    arguments: type[_Arguments]
    handler: Handler

    @property
    def name(self) -> str:
        return self.operation.value

    def validate(self, arguments: dict[str, Any]) -> _Arguments:
        """Validate raw arguments.

        Raises:
            pydantic.ValidationError: If the arguments do not match the schema
        """
        return self.arguments.model_validate(arguments)

    def describe(self) -> dict[str, Any]:
        """Describe the operation for the ``list_operations`` catalog."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.arguments.model_json_schema(),
        }


def format_validation_error(error: ValidationError) -> str:
    """Aggregate a validation error into one human-readable message."""
    messages = []
    for detail in error.errors(include_url=False):
        location = ".".join(str(part) for part in detail["loc"])
        messages.append(f"{location}: {detail['msg']}" if location else detail["msg"])
    return "Invalid input: " + ", ".join(messages)


def build_operations(service: WeatherService) -> dict[str, OperationSpec]:
    """Bind the operation catalog to a weather service."""

    async def search_location(arguments: SearchLocationArguments) -> list[dict[str, Any]]:
        return await service.search_location(arguments.city)

    async def get_complete_forecast(arguments: GetCompleteForecastArguments) -> dict[str, Any]:
        return await service.get_complete_forecast(arguments.latitude, arguments.longitude)

    specs = [
        OperationSpec(
            Operation.SEARCH_LOCATION,
            "Search for locations by city name. Returns up to 5 matching locations with their coordinates.",
            SearchLocationArguments,
            search_location,
        ),
        OperationSpec(
            Operation.GET_COMPLETE_FORECAST,
            "Get complete weather forecast including current conditions, next 12 hours, "
            "and next 7 days for a specific location.",
            GetCompleteForecastArguments,
            get_complete_forecast,
        ),
    ]
    return {spec.name: spec for spec in specs}
