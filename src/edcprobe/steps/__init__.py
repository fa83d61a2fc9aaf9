"""The live suite, one Step per module, in execution order."""

from edcprobe.engine.step import Step
from edcprobe.steps.cleanup import Cleanup
from edcprobe.steps.data_entry import FillFormsAndTest
from edcprobe.steps.forms import CreateBaseTemplates, ForkValidationTemplates, ForkWorkflowTemplates
from edcprobe.steps.login import LoginAdmin
from edcprobe.steps.members import CreateMembers
from edcprobe.steps.organization import RegisterOrganization
from edcprobe.steps.patient import CreatePatient
from edcprobe.steps.study import CreateStudy
from edcprobe.steps.validation_rules import CreateValidationRules
from edcprobe.steps.visits import PatientVisitsForms
from edcprobe.steps.workflows import SetupWorkflows


def default_steps() -> list[Step]:
    """Fresh instances of every suite step, in execution order."""
    return [
        Cleanup(),
        RegisterOrganization(),
        CreateMembers(),
        LoginAdmin(),
        CreateBaseTemplates(),
        ForkValidationTemplates(),
        ForkWorkflowTemplates(),
        CreateStudy(),
        CreateValidationRules(),
        SetupWorkflows(),
        CreatePatient(),
        FillFormsAndTest(),
        PatientVisitsForms(),
    ]


__all__ = [
    "Cleanup",
    "CreateBaseTemplates",
    "CreateMembers",
    "CreatePatient",
    "CreateStudy",
    "CreateValidationRules",
    "FillFormsAndTest",
    "ForkValidationTemplates",
    "ForkWorkflowTemplates",
    "LoginAdmin",
    "PatientVisitsForms",
    "RegisterOrganization",
    "SetupWorkflows",
    "default_steps",
]
