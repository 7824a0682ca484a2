"""Per-call resolution state and results."""

from kube_templates.state.session import ResolutionSession, TemplateResult, UsedResource

__all__ = [
    "ResolutionSession",
    "TemplateResult",
    "UsedResource",
]
