"""
Step graph data types for the guided intake flow.

A flow is a table of immutable StepDefinitions. Transitions are data
(Fixed, ByValue, BySentinel) rather than closures so the graph can be
validated before any conversation runs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Tuple, Union

from .errors import ConfigurationError, StepNotFoundError

CollectedData = Dict[str, str]

ROUTE_AFTER_CONTACT = "route_after_contact"
TERMINAL_STEP_ID = "complete"
FLOW_CHOICE_FIELD = "flowChoice"


class StepKind(Enum):
    MESSAGE = "message"                  # Display only, auto-advances
    CHOICE = "choice"                    # Quick-reply buttons
    TEXT = "text"
    PHONE = "phone"
    EMAIL = "email"
    DATE = "date"                        # Date of birth, MM-DD-YYYY
    FREEFORM_PARAGRAPH = "freeform-paragraph"
    CONFIRMATION = "confirmation"        # Triggers lead creation
    SLOT_PICKER = "slot-picker"          # Appointment slot buttons

    @property
    def takes_options(self) -> bool:
        return self in (StepKind.CHOICE, StepKind.SLOT_PICKER)

    @property
    def takes_input(self) -> bool:
        return self not in (StepKind.MESSAGE, StepKind.CONFIRMATION)


@dataclass(frozen=True)
class StepOption:
    label: str
    value: str


@dataclass(frozen=True)
class Fixed:
    """Static edge to a single step."""
    step_id: str


@dataclass(frozen=True)
class ByValue:
    """Edge chosen by the submitted value, with a fallback."""
    routes: Mapping[str, str]
    default: str


@dataclass(frozen=True)
class BySentinel:
    """Edge resolved later from collected data (see resolver)."""
    sentinel: str = ROUTE_AFTER_CONTACT


NextStep = Union[Fixed, ByValue, BySentinel]


@dataclass(frozen=True)
class StepDefinition:
    """A single node in the conversation graph."""
    id: str
    kind: StepKind
    prompt: str = ""  # Empty: the previous prompt already asked for this
    options: Tuple[StepOption, ...] = ()
    collects_field: Optional[str] = None
    validate: Optional[Callable[[str], bool]] = field(default=None, compare=False)
    next: Optional[NextStep] = None  # None only for the terminal step
    skip_when: Optional[Callable[[CollectedData], bool]] = field(default=None, compare=False)
    flow_category: Optional[str] = None  # Analytics tag, no effect on routing
    placeholder: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.next is None

    @property
    def is_confirmation(self) -> bool:
        return self.kind == StepKind.CONFIRMATION

    def option_label(self, value: str) -> Optional[str]:
        for option in self.options:
            if option.value == value:
                return option.label
        return None

    def to_dict(self) -> Dict:
        """Client-facing view of the step (no callables)."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "prompt": self.prompt,
            "options": [{"label": o.label, "value": o.value} for o in self.options],
            "placeholder": self.placeholder,
            "flow_category": self.flow_category,
        }


class StepTable:
    """Read-only lookup over a set of steps, keyed by step id."""

    def __init__(self, steps, sentinel_routes: Mapping[str, str], sentinel_default: str):
        self._steps: Dict[str, StepDefinition] = {}
        for step in steps:
            if step.id in self._steps:
                raise ConfigurationError(f"Duplicate step id: {step.id!r}")
            self._steps[step.id] = step
        self.sentinel_routes: Dict[str, str] = dict(sentinel_routes)
        self.sentinel_default = sentinel_default

    def step_by_id(self, step_id: str) -> StepDefinition:
        try:
            return self._steps[step_id]
        except KeyError:
            raise StepNotFoundError(step_id) from None

    def __contains__(self, step_id: str) -> bool:
        return step_id in self._steps

    def __iter__(self):
        return iter(self._steps.values())

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def ids(self):
        return list(self._steps)
