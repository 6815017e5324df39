"""Workflow definitions module."""

from workflows.invoice_workflow import (
    InvoiceBuildWorkflow,
    InvoiceBuildWorkflowInput,
    InvoiceBuildWorkflowOutput,
    TASK_QUEUE_DEFAULT,
)

__all__ = [
    "InvoiceBuildWorkflow",
    "InvoiceBuildWorkflowInput",
    "InvoiceBuildWorkflowOutput",
    "TASK_QUEUE_DEFAULT",
]
