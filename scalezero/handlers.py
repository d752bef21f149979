"""Event handler entry points (AWS Lambda style).

fleet_handler
    Unit state-change events for the backend pool, plus the scheduled
    safety-net trigger. Runs one fleet evaluation.

registration_handler
    Unit state-change events for both pools. Keeps the private name
    records current.

Both build their component once per process and reuse it across
invocations.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from scalezero.config.settings import get_config
from scalezero.coordination.fleet_controller import FleetController
from scalezero.coordination.name_registration import NameRegistrar
from scalezero.runtime import build_fleet_controller, build_name_registrar

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

SCHEDULED_EVENT_TYPE = "Scheduled Event"

_fleet_controller: FleetController | None = None
_name_registrar: NameRegistrar | None = None


def get_fleet_controller() -> FleetController:
    global _fleet_controller
    if _fleet_controller is None:
        _fleet_controller = build_fleet_controller(get_config())
    return _fleet_controller


def get_name_registrar() -> NameRegistrar:
    global _name_registrar
    if _name_registrar is None:
        _name_registrar = build_name_registrar(get_config())
    return _name_registrar


def reset_handlers() -> None:
    """Drop cached components (for testing)."""
    global _fleet_controller, _name_registrar
    _fleet_controller = None
    _name_registrar = None


async def handle_fleet_event(event: dict[str, Any]) -> dict[str, Any] | None:
    controller = get_fleet_controller()
    if event.get("detail-type") == SCHEDULED_EVENT_TYPE:
        decision = await controller.evaluate()
    else:
        decision = await controller.handle_unit_state_change(event)
    return decision.to_dict() if decision else None


def fleet_handler(event: dict[str, Any], context: Any = None) -> dict[str, Any] | None:
    """Fleet controller entry point."""
    return asyncio.run(handle_fleet_event(event))


def registration_handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    """Name registration entry point."""
    outcome = asyncio.run(get_name_registrar().handle_event(event))
    return {"outcome": outcome}
