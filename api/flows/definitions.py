"""
Guided intake flow definitions.

Four flows start from the main menu (pricing, insurance verification,
admissions, general question) and converge on a shared contact chain.
After the contact chain, the route_after_contact sentinel sends each flow
to its own continuation.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

from .errors import ConfigurationError
from .steps import (
    FLOW_CHOICE_FIELD,
    ROUTE_AFTER_CONTACT,
    TERMINAL_STEP_ID,
    ByValue,
    BySentinel,
    CollectedData,
    Fixed,
    StepDefinition,
    StepKind,
    StepOption,
    StepTable,
)

logger = logging.getLogger(__name__)

WELCOME_STEP_ID = "welcome"
MAIN_MENU_STEP_ID = "main_menu"

TREATMENT_OPTIONS = (
    StepOption("Inpatient", "inpatient"),
    StepOption("Outpatient", "outpatient"),
)

SEEKING_FOR_OPTIONS = (
    StepOption("Myself", "myself"),
    StepOption("Someone Else", "someone_else"),
)

CARRIER_OPTIONS = (
    StepOption("Blue Cross Blue Shield", "bcbs"),
    StepOption("Aetna", "aetna"),
    StepOption("UnitedHealthcare", "united"),
    StepOption("Cigna", "cigna"),
    StepOption("Humana", "humana"),
)

def _has_name(data: CollectedData) -> bool:
    return bool(data.get("name", "").strip())


# Where each flow resumes once the shared contact chain is done.
ROUTE_AFTER_CONTACT_TABLE: Dict[str, str] = {
    "pricing": "contact_preference",
    "verify_insurance": "vob_dob",
    "admissions": "admissions_additional_info",
    "question": "confirmation",
}
ROUTE_AFTER_CONTACT_DEFAULT = "confirmation"


def _welcome_and_menu() -> List[StepDefinition]:
    return [
        StepDefinition(
            id=WELCOME_STEP_ID,
            kind=StepKind.MESSAGE,
            prompt="How can I help you today?",
            next=Fixed(MAIN_MENU_STEP_ID),
        ),
        StepDefinition(
            id=MAIN_MENU_STEP_ID,
            kind=StepKind.CHOICE,
            prompt="Please choose an option:",
            options=(
                StepOption("Get Pricing", "pricing"),
                StepOption("Verify Insurance", "verify_insurance"),
                StepOption("Connect With Admissions", "admissions"),
                StepOption("Ask A Question", "question"),
            ),
            collects_field=FLOW_CHOICE_FIELD,
            next=ByValue(
                routes={
                    "pricing": "pricing_payment_type",
                    "verify_insurance": "vob_treatment_type",
                    "admissions": "admissions_treatment_type",
                    "question": "question_topic",
                },
                default=MAIN_MENU_STEP_ID,
            ),
        ),
    ]


def _pricing_flow() -> List[StepDefinition]:
    """Get Pricing: insurance callers verify coverage, private pay goes to contact."""
    category = "pricing"
    return [
        StepDefinition(
            id="pricing_payment_type",
            kind=StepKind.CHOICE,
            prompt="We accept both private pay and insurance. Which will you be using?",
            options=(StepOption("Insurance", "insurance"), StepOption("Private Pay", "private_pay")),
            collects_field="paymentType",
            next=ByValue(
                routes={"insurance": "pricing_insurance_type"},
                default="pricing_treatment_type",
            ),
            flow_category=category,
        ),
        StepDefinition(
            id="pricing_insurance_type",
            kind=StepKind.CHOICE,
            prompt="What type of insurance do you have?",
            options=CARRIER_OPTIONS + (StepOption("Other", "other"),),
            collects_field="insuranceCarrier",
            next=Fixed("pricing_verify_prompt"),
            flow_category=category,
        ),
        StepDefinition(
            id="pricing_verify_prompt",
            kind=StepKind.CHOICE,
            prompt=(
                "We accept several providers. Let's start by verifying some "
                "information on your coverage."
            ),
            options=(StepOption("Verify Insurance", "verify"),),
            collects_field="pricingInsuranceVerify",
            next=Fixed("pricing_vob_treatment_type"),
            flow_category=category,
        ),
        StepDefinition(
            id="pricing_vob_treatment_type",
            kind=StepKind.CHOICE,
            prompt="What type of treatment is the patient looking for?",
            options=TREATMENT_OPTIONS,
            collects_field="treatmentType",
            next=Fixed("pricing_vob_patient_name"),
            flow_category=category,
        ),
        StepDefinition(
            id="pricing_vob_patient_name",
            kind=StepKind.TEXT,
            prompt="What is the patient's first and last name?",
            placeholder="Enter full name",
            collects_field="name",
            next=Fixed("pricing_vob_email"),
            flow_category=category,
        ),
        StepDefinition(
            id="pricing_vob_email",
            kind=StepKind.EMAIL,
            prompt="What is your email address?",
            placeholder="your@email.com",
            collects_field="email",
            next=Fixed("pricing_vob_phone"),
            flow_category=category,
        ),
        StepDefinition(
            id="pricing_vob_phone",
            kind=StepKind.PHONE,
            prompt="What is your phone number?",
            placeholder="(555) 555-5555",
            collects_field="phone",
            next=Fixed("pricing_vob_dob"),
            flow_category=category,
        ),
        StepDefinition(
            id="pricing_vob_dob",
            kind=StepKind.DATE,
            prompt="What is the patient's date of birth? (MM-DD-YYYY)",
            placeholder="MM-DD-YYYY",
            collects_field="dateOfBirth",
            next=Fixed("pricing_vob_member_id"),
            flow_category=category,
        ),
        StepDefinition(
            id="pricing_vob_member_id",
            kind=StepKind.TEXT,
            prompt="What is the insurance ID number?",
            placeholder="Enter Member/Policy ID",
            collects_field="memberId",
            next=Fixed("vob_confirmation"),
            flow_category=category,
        ),
        StepDefinition(
            id="pricing_treatment_type",
            kind=StepKind.CHOICE,
            prompt="What type of treatment are you looking for?",
            options=TREATMENT_OPTIONS,
            collects_field="treatmentType",
            next=Fixed("pricing_seeking_for"),
            flow_category=category,
        ),
        StepDefinition(
            id="pricing_seeking_for",
            kind=StepKind.CHOICE,
            prompt="Who are you seeking treatment for?",
            options=SEEKING_FOR_OPTIONS,
            collects_field="seekingFor",
            next=Fixed("contact_name"),
            flow_category=category,
        ),
    ]


def _verify_insurance_flow() -> List[StepDefinition]:
    category = "verify_insurance"
    return [
        StepDefinition(
            id="vob_treatment_type",
            kind=StepKind.CHOICE,
            prompt="What type of treatment is the patient looking for?",
            options=TREATMENT_OPTIONS,
            collects_field="treatmentType",
            next=Fixed("vob_patient_name"),
            flow_category=category,
        ),
        StepDefinition(
            id="vob_patient_name",
            kind=StepKind.TEXT,
            prompt="What is the patient's first and last name?",
            placeholder="Enter full name",
            collects_field="name",
            next=Fixed("contact_email"),
            flow_category=category,
        ),
        StepDefinition(
            id="vob_dob",
            kind=StepKind.DATE,
            prompt="What is the patient's date of birth? (MM-DD-YYYY)",
            placeholder="MM-DD-YYYY",
            collects_field="dateOfBirth",
            next=Fixed("vob_insurance_provider"),
            flow_category=category,
        ),
        StepDefinition(
            id="vob_insurance_provider",
            kind=StepKind.CHOICE,
            prompt="Who is the insurance provider?",
            options=CARRIER_OPTIONS + (
                StepOption("Medicare", "medicare"),
                StepOption("Medicaid", "medicaid"),
                StepOption("Other", "other"),
            ),
            collects_field="insuranceCarrier",
            next=Fixed("vob_member_id"),
            flow_category=category,
        ),
        StepDefinition(
            id="vob_member_id",
            kind=StepKind.TEXT,
            prompt="What is the insurance ID number?",
            placeholder="Enter Member/Policy ID",
            collects_field="memberId",
            next=Fixed("vob_confirmation"),
            flow_category=category,
        ),
        StepDefinition(
            id="vob_confirmation",
            kind=StepKind.CONFIRMATION,
            prompt=(
                "Thank you, one of our team members will reach out shortly to "
                "confirm your insurance has been verified!"
            ),
            next=Fixed(TERMINAL_STEP_ID),
            flow_category=category,
        ),
    ]


def _admissions_flow() -> List[StepDefinition]:
    category = "admissions"
    return [
        StepDefinition(
            id="admissions_treatment_type",
            kind=StepKind.CHOICE,
            prompt="What type of treatment are you looking for?",
            options=TREATMENT_OPTIONS,
            collects_field="treatmentType",
            next=Fixed("admissions_seeking_for"),
            flow_category=category,
        ),
        StepDefinition(
            id="admissions_seeking_for",
            kind=StepKind.CHOICE,
            prompt="Who are you seeking treatment for?",
            options=SEEKING_FOR_OPTIONS,
            collects_field="seekingFor",
            next=Fixed("admissions_name"),
            flow_category=category,
        ),
        StepDefinition(
            id="admissions_name",
            kind=StepKind.TEXT,
            prompt="What is your first and last name?",
            placeholder="Enter your full name",
            collects_field="name",
            next=Fixed("contact_email"),
            skip_when=_has_name,
            flow_category=category,
        ),
        StepDefinition(
            id="admissions_additional_info",
            kind=StepKind.FREEFORM_PARAGRAPH,
            prompt="Please provide any additional information you would like us to know.",
            placeholder="Type any additional details here...",
            collects_field="additionalInfo",
            next=Fixed("contact_preference"),
            flow_category=category,
        ),
    ]


def _question_flow() -> List[StepDefinition]:
    category = "question"
    return [
        StepDefinition(
            id="question_topic",
            kind=StepKind.CHOICE,
            prompt="What is your question in regard to?",
            options=(
                StepOption("Treatment Options", "treatment"),
                StepOption("Insurance & Payment", "insurance"),
                StepOption("Scheduling", "scheduling"),
                StepOption("Something Else", "other"),
            ),
            collects_field="questionTopic",
            next=Fixed("question_text"),
            flow_category=category,
        ),
        StepDefinition(
            id="question_text",
            kind=StepKind.FREEFORM_PARAGRAPH,
            prompt="What is your question?",
            placeholder="Type your question here...",
            collects_field="questionText",
            next=Fixed("question_contact_prompt"),
            flow_category=category,
        ),
        StepDefinition(
            id="question_contact_prompt",
            kind=StepKind.MESSAGE,
            prompt=(
                "To provide a response, we need some basic contact information. "
                "What is your first and last name?"
            ),
            next=Fixed("question_name"),
            flow_category=category,
        ),
        StepDefinition(
            id="question_name",
            kind=StepKind.TEXT,
            prompt="",
            placeholder="Enter your full name",
            collects_field="name",
            next=Fixed("contact_email"),
            flow_category=category,
        ),
    ]


def _shared_steps() -> List[StepDefinition]:
    """Contact chain, contact preference and the terminal steps."""
    return [
        StepDefinition(
            id="contact_name",
            kind=StepKind.TEXT,
            prompt="What is your first and last name?",
            placeholder="Enter your full name",
            collects_field="name",
            next=Fixed("contact_email"),
            skip_when=_has_name,
        ),
        StepDefinition(
            id="contact_email",
            kind=StepKind.EMAIL,
            prompt="What is your email address?",
            placeholder="your@email.com",
            collects_field="email",
            next=Fixed("contact_phone"),
        ),
        StepDefinition(
            id="contact_phone",
            kind=StepKind.PHONE,
            prompt="What is your phone number?",
            placeholder="(555) 555-5555",
            collects_field="phone",
            next=BySentinel(ROUTE_AFTER_CONTACT),
        ),
        StepDefinition(
            id="contact_preference",
            kind=StepKind.CHOICE,
            prompt="Which would you like to do?",
            options=(StepOption("Text Us", "text"), StepOption("Call Me", "call")),
            collects_field="contactPreference",
            next=Fixed("confirmation"),
        ),
        StepDefinition(
            id="confirmation",
            kind=StepKind.CONFIRMATION,
            prompt=(
                "Thank you, one of our team members will be in touch shortly! "
                "Please note that if you have reached out after-hours, someone "
                "will be in touch the next business day."
            ),
            next=Fixed(TERMINAL_STEP_ID),
        ),
        StepDefinition(
            id=TERMINAL_STEP_ID,
            kind=StepKind.MESSAGE,
            prompt="Thank you for contacting us! Is there anything else I can help you with?",
        ),
    ]


def build_step_table() -> StepTable:
    steps = (
        _welcome_and_menu()
        + _pricing_flow()
        + _verify_insurance_flow()
        + _admissions_flow()
        + _question_flow()
        + _shared_steps()
    )
    return StepTable(steps, ROUTE_AFTER_CONTACT_TABLE, ROUTE_AFTER_CONTACT_DEFAULT)


# ── Graph validation ──────────────────────────────────────────────

def _edge_targets(table: StepTable, step: StepDefinition) -> List[str]:
    nxt = step.next
    if nxt is None:
        return []
    if isinstance(nxt, Fixed):
        return [nxt.step_id]
    if isinstance(nxt, ByValue):
        return list(nxt.routes.values()) + [nxt.default]
    if isinstance(nxt, BySentinel):
        return list(table.sentinel_routes.values()) + [table.sentinel_default]
    raise ConfigurationError(f"Step {step.id!r} has an unsupported next edge: {nxt!r}")


def validate_graph(table: StepTable) -> None:
    """
    Check that the step graph is closed and well-formed.

    Raises ConfigurationError on the first problem found.
    """
    problems: List[str] = []

    for target in list(table.sentinel_routes.values()) + [table.sentinel_default]:
        if target not in table:
            problems.append(f"sentinel route points to unknown step {target!r}")

    terminals = [s.id for s in table if s.is_terminal]
    if terminals != [TERMINAL_STEP_ID]:
        problems.append(f"expected exactly one terminal step {TERMINAL_STEP_ID!r}, found {terminals}")

    for step in table:
        for target in _edge_targets(table, step):
            if target not in table:
                problems.append(f"{step.id} -> unknown step {target!r}")

        if step.kind.takes_options and not step.options:
            problems.append(f"{step.id} is a {step.kind.value} step without options")
        if step.options and not step.kind.takes_options:
            problems.append(f"{step.id} declares options but is a {step.kind.value} step")

        if isinstance(step.next, ByValue):
            values = {o.value for o in step.options}
            unknown = set(step.next.routes) - values
            if unknown:
                problems.append(f"{step.id} routes on values that are not options: {sorted(unknown)}")

        if step.kind.takes_input and not step.collects_field:
            problems.append(f"{step.id} takes input but collects no field")

        if step.skip_when is not None and not isinstance(step.next, Fixed):
            problems.append(f"{step.id} has a skip condition but no static next step")

        if step.kind == StepKind.MESSAGE and not step.is_terminal and not isinstance(step.next, Fixed):
            problems.append(f"message step {step.id} must have a static next step")

    if problems:
        raise ConfigurationError("Invalid step graph: " + "; ".join(problems))


def reachable_steps(table: StepTable, root: str = WELCOME_STEP_ID) -> Set[str]:
    """All step ids reachable from root, following edges, sentinels and skips."""
    seen: Set[str] = set()
    stack = [root]
    while stack:
        step_id = stack.pop()
        if step_id in seen:
            continue
        seen.add(step_id)
        step = table.step_by_id(step_id)
        targets = _edge_targets(table, step)
        for target in targets:
            target_step = table.step_by_id(target)
            if target_step.skip_when is not None and isinstance(target_step.next, Fixed):
                stack.append(target_step.next.step_id)
        stack.extend(targets)
    return seen


# ── Progress ──────────────────────────────────────────────────────

_BASE_PATH = [WELCOME_STEP_ID, MAIN_MENU_STEP_ID]

FLOW_PATHS: Dict[str, List[str]] = {
    "pricing_insurance": _BASE_PATH + [
        "pricing_payment_type", "pricing_insurance_type", "pricing_verify_prompt",
        "pricing_vob_treatment_type", "pricing_vob_patient_name", "pricing_vob_email",
        "pricing_vob_phone", "pricing_vob_dob", "pricing_vob_member_id",
        "vob_confirmation", TERMINAL_STEP_ID,
    ],
    "pricing": _BASE_PATH + [
        "pricing_payment_type", "pricing_treatment_type", "pricing_seeking_for",
        "contact_name", "contact_email", "contact_phone", "contact_preference",
        "confirmation", TERMINAL_STEP_ID,
    ],
    "verify_insurance": _BASE_PATH + [
        "vob_treatment_type", "vob_patient_name", "contact_email", "contact_phone",
        "vob_dob", "vob_insurance_provider", "vob_member_id", "vob_confirmation",
        TERMINAL_STEP_ID,
    ],
    "admissions": _BASE_PATH + [
        "admissions_treatment_type", "admissions_seeking_for", "admissions_name",
        "contact_email", "contact_phone", "admissions_additional_info",
        "contact_preference", "confirmation", TERMINAL_STEP_ID,
    ],
    "question": _BASE_PATH + [
        "question_topic", "question_text", "question_contact_prompt", "question_name",
        "contact_email", "contact_phone", "confirmation", TERMINAL_STEP_ID,
    ],
}


def flow_path(collected: CollectedData) -> List[str]:
    choice = collected.get(FLOW_CHOICE_FIELD, "")
    if choice == "pricing" and collected.get("paymentType") == "insurance":
        return FLOW_PATHS["pricing_insurance"]
    return FLOW_PATHS.get(choice, _BASE_PATH)


def flow_progress(collected: CollectedData, current_step_id: str) -> int:
    """Percentage of the nominal path for the chosen flow (0 when off-path)."""
    path = flow_path(collected)
    if len(path) <= 1 or current_step_id not in path:
        return 0
    return round(path.index(current_step_id) / (len(path) - 1) * 100)


def _check_flow_paths(table: StepTable, paths: Dict[str, Iterable[str]]) -> None:
    for name, path in paths.items():
        missing = [s for s in path if s not in table]
        if missing:
            raise ConfigurationError(f"Flow path {name!r} names unknown steps: {missing}")


STEP_TABLE = build_step_table()
validate_graph(STEP_TABLE)
_check_flow_paths(STEP_TABLE, FLOW_PATHS)
logger.info(f"Intake flow registered: {len(STEP_TABLE)} steps")


def step_by_id(step_id: str, table: Optional[StepTable] = None) -> StepDefinition:
    return (table or STEP_TABLE).step_by_id(step_id)
