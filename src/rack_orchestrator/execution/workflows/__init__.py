"""
Workflow package.

This makes the workflows folder an explicit package so both Python and mypy
resolve modules consistently.
"""

from rack_orchestrator.execution.workflows.firmwarecontrol import FirmwareControlWorkflow
from rack_orchestrator.execution.workflows.injectexpectation import InjectExpectationWorkflow
from rack_orchestrator.execution.workflows.powercontrol import PowerControlWorkflow

__all__ = ["FirmwareControlWorkflow", "InjectExpectationWorkflow", "PowerControlWorkflow"]
