"""Event creation wizard.

- states: pure transition table over WizardState
- runner: CreationWizard, the conversation driver
"""

from muster.wizard.runner import (
    CreationWizard,
    WizardOutcome,
    WizardResult,
    create_event_role,
    discard_event_role,
)
from muster.wizard.states import (
    Draft,
    Prompt,
    Step,
    WizardContext,
    WizardState,
    start,
    transition,
)

__all__ = [
    "CreationWizard",
    "Draft",
    "Prompt",
    "Step",
    "WizardContext",
    "WizardOutcome",
    "WizardResult",
    "WizardState",
    "create_event_role",
    "discard_event_role",
    "start",
    "transition",
]
