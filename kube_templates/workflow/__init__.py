"""Template resolution orchestrator."""

from kube_templates.workflow.resolver import TemplateResolver

__all__ = ["TemplateResolver"]
