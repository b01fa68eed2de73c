"""
Duty hour threshold policy table.

=============================================================================
HOW THE TABLE IS USED
=============================================================================

THRESHOLD_POLICIES lists every alert level in ascending order. Each policy
declares:
    - the alert message pushed to the dispatch sink
    - the response options a human may choose (empty = informational)
    - for each option, the Transition applied by the response handler

The shift monitor walks the levels generically (newly_crossed), and the
response handler resolves (threshold, response code) to a Transition with a
single lookup (lookup_transition). Adding a level or an option is a data
change here - nothing else special-cases individual thresholds.

Transition fields left as None mean "unchanged".
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

from services.errors import InvalidResponseError, UnknownThresholdError


@dataclass(frozen=True)
class Transition:
    """Effect of one response code on the shift."""
    log_type: str
    status: Optional[str] = None
    relief_required: Optional[bool] = None
    relief_planned: Optional[bool] = None

    @property
    def completes_shift(self) -> bool:
        return self.status == 'COMPLETED'


@dataclass(frozen=True)
class ResponseOption:
    code: str
    label: str
    transition: Transition


@dataclass(frozen=True)
class ThresholdPolicy:
    hours: int
    message: str
    options: Tuple[ResponseOption, ...] = ()

    @property
    def alert_type(self) -> str:
        return f"{self.hours}HR"

    @property
    def log_type(self) -> str:
        return f"ALERT_{self.hours}HR"

    @property
    def requires_action(self) -> bool:
        return bool(self.options)

    @property
    def valid_responses(self) -> List[str]:
        return [option.code for option in self.options]

    def options_payload(self) -> List[dict]:
        return [{"value": option.code, "label": option.label} for option in self.options]


THRESHOLD_POLICIES: Tuple[ThresholdPolicy, ...] = (
    ThresholdPolicy(
        hours=7,
        message="7 Hour Alert: Duty nearing shift limit",
    ),
    ThresholdPolicy(
        hours=8,
        message="8 Hour Alert: Plan relief or confirm continuation",
        options=(
            ResponseOption("PLAN_RELIEF", "Plan to get relief", Transition(
                log_type='RELIEF_PLANNED', status='RELIEF_PLANNED',
                relief_planned=True, relief_required=True,
            )),
            ResponseOption("RELIEF_NOT_REQUIRED", "Relief not required", Transition(
                log_type='RELIEF_NOT_REQUIRED', relief_required=False,
            )),
        ),
    ),
    ThresholdPolicy(
        hours=9,
        message="9 Hour Alert: Critical - Relief status required",
        options=(
            ResponseOption("CREW_RELIEVED", "Crew will be relieved", Transition(
                log_type='CREW_RELIEVED', status='COMPLETED',
            )),
            ResponseOption("CREW_NOT_BOOKED", "Crew not booked", Transition(
                log_type='CREW_NOT_BOOKED',
            )),
        ),
    ),
    ThresholdPolicy(
        hours=10,
        message="10 Hour Alert: Extended duty - Action required",
        options=(
            ResponseOption("RELIEF_ARRANGED", "Relief arranged", Transition(
                log_type='RELIEF_PLANNED', status='RELIEF_PLANNED', relief_planned=True,
            )),
            ResponseOption("CONTINUE_DUTY", "Continue duty", Transition(
                log_type='KEEP_ON_DUTY',
            )),
        ),
    ),
    ThresholdPolicy(
        hours=11,
        message="11 Hour Alert: Critical - Immediate action required",
        options=(
            ResponseOption("KEEP_ON", "Keep on duty (emergency)", Transition(
                log_type='KEEP_ON_DUTY',
            )),
            ResponseOption("CREW_ALREADY_RELIEVED", "Crew already relieved", Transition(
                log_type='CREW_ALREADY_RELIEVED', status='COMPLETED',
            )),
        ),
    ),
    ThresholdPolicy(
        hours=14,
        message="14 Hour Alert: MAXIMUM LIMIT REACHED - Emergency action required",
        options=(
            ResponseOption("EMERGENCY_RELIEF", "Emergency relief required", Transition(
                log_type='RELIEF_PLANNED', status='RELIEF_PLANNED',
                relief_planned=True, relief_required=True,
            )),
            # Completion itself comes from an explicit complete call
            ResponseOption("SHIFT_ENDING", "Shift ending now", Transition(
                log_type='SHIFT_ENDING',
            )),
        ),
    ),
)

THRESHOLDS: Tuple[int, ...] = tuple(policy.hours for policy in THRESHOLD_POLICIES)

_POLICY_BY_HOURS: Dict[int, ThresholdPolicy] = {policy.hours: policy for policy in THRESHOLD_POLICIES}

_TRANSITIONS: Dict[Tuple[int, str], Transition] = {
    (policy.hours, option.code): option.transition
    for policy in THRESHOLD_POLICIES
    for option in policy.options
}

# Dashboard colour bands, highest first
_ALERT_LEVELS = (
    (14, 'critical'),
    (11, 'danger'),
    (9, 'high'),
    (8, 'warning'),
    (7, 'info'),
)


def parse_threshold(value: Union[int, str]) -> int:
    """Accept 8, "8" or "8HR" and return the threshold level."""
    if isinstance(value, bool):
        raise UnknownThresholdError(f"Unknown alert threshold: {value!r}")
    if isinstance(value, int):
        hours = value
    else:
        text = str(value).strip().upper()
        if text.endswith('HR'):
            text = text[:-2]
        try:
            hours = int(text)
        except ValueError:
            raise UnknownThresholdError(f"Unknown alert threshold: {value!r}") from None
    if hours not in _POLICY_BY_HOURS:
        raise UnknownThresholdError(f"Unknown alert threshold: {value!r}")
    return hours


def get_policy(threshold: Union[int, str]) -> ThresholdPolicy:
    return _POLICY_BY_HOURS[parse_threshold(threshold)]


def lookup_transition(threshold: Union[int, str], response_code: str) -> Transition:
    """Resolve a human response to its effect, or raise InvalidResponseError."""
    policy = get_policy(threshold)
    transition = _TRANSITIONS.get((policy.hours, response_code))
    if transition is None:
        raise InvalidResponseError(policy.hours, response_code, policy.valid_responses)
    return transition


def newly_crossed(duty_hours: float, sent_thresholds: Iterable[int]) -> List[ThresholdPolicy]:
    """
    Thresholds reached but not yet alerted, ascending.

    A single scan can return several levels (catch-up after downtime or a
    coarse scan interval).
    """
    already_sent = set(sent_thresholds)
    return [
        policy for policy in THRESHOLD_POLICIES
        if duty_hours >= policy.hours and policy.hours not in already_sent
    ]


def alert_level(duty_hours: float) -> str:
    for hours, level in _ALERT_LEVELS:
        if duty_hours >= hours:
            return level
    return 'normal'
