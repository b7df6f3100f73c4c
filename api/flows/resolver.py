"""
Transition resolution for the guided intake flow.

Given the step just answered, the submitted value and the collected data,
compute the id of the next step the user should see.
"""

import logging

from .steps import (
    FLOW_CHOICE_FIELD,
    ROUTE_AFTER_CONTACT,
    ByValue,
    BySentinel,
    CollectedData,
    Fixed,
    StepDefinition,
    StepTable,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class TransitionResolver:
    """Resolves static, value-dependent, sentinel and skip edges."""

    def __init__(self, table: StepTable):
        self.table = table

    def edge_target(self, step: StepDefinition, submitted_value: str) -> str:
        nxt = step.next
        if isinstance(nxt, Fixed):
            return nxt.step_id
        if isinstance(nxt, ByValue):
            return nxt.routes.get(submitted_value, nxt.default)
        if isinstance(nxt, BySentinel):
            return nxt.sentinel
        raise ConfigurationError(f"Step {step.id!r} has no next step")

    def resolve_sentinel(self, target: str, collected: CollectedData) -> str:
        if target != ROUTE_AFTER_CONTACT:
            return target
        flow_choice = collected.get(FLOW_CHOICE_FIELD, "")
        return self.table.sentinel_routes.get(flow_choice, self.table.sentinel_default)

    def apply_skip(self, target: str, collected: CollectedData) -> str:
        # One level only: the replacement's own skip condition is not consulted.
        step = self.table.step_by_id(target)
        if step.skip_when is not None and step.skip_when(collected):
            if isinstance(step.next, Fixed):
                logger.debug(f"Skipping step {target} -> {step.next.step_id}")
                return step.next.step_id
        return target

    def resolve_next(self, step: StepDefinition, submitted_value: str, collected: CollectedData) -> str:
        target = self.edge_target(step, submitted_value)
        target = self.resolve_sentinel(target, collected)
        target = self.apply_skip(target, collected)
        # Raises StepNotFoundError if the table was bypassed
        self.table.step_by_id(target)
        return target
