"""Cheap checks on raw template text that never run the engine."""

from __future__ import annotations

import logging
import re
from typing import Union

from kube_templates.config.models import DEFAULT_START_DELIM, DEFAULT_STOP_DELIM
from kube_templates.crypto.encryption import PROTECTED_PREFIX

logger = logging.getLogger(__name__)


def _text(template: Union[bytes, str]) -> str:
    if isinstance(template, bytes):
        return template.decode("utf-8", errors="replace")
    return template


def has_template(
    template: Union[bytes, str], start_delim: str = "", check_for_encrypted: bool = False
) -> bool:
    """Return whether *template* contains the start delimiter.

    With *check_for_encrypted* an ``$ocm_encrypted:`` marker also counts.
    An empty *start_delim* means ``{{``.
    """
    text = _text(template)
    start_delim = start_delim or DEFAULT_START_DELIM
    found = start_delim in text or (check_for_encrypted and PROTECTED_PREFIX in text)
    logger.debug("has_template with start delimiter %s: %s", start_delim, found)
    return found


def uses_encryption(
    template: Union[bytes, str], start_delim: str = "", stop_delim: str = ""
) -> bool:
    """Return whether rendering *template* would produce encrypted values.

    Looks for expressions calling ``fromSecret`` or ``copySecretData``, and
    for expressions piped into ``protect``.
    """
    text = _text(template)
    d1 = re.escape(start_delim or DEFAULT_START_DELIM)
    d2 = re.escape(stop_delim or DEFAULT_STOP_DELIM)
    pattern = re.compile(
        d1
        + r"-?(.*\bfromSecret\b.*|.*\bcopySecretData\b.*|.*\|\s*protect\s*|\s*protect\s*\(.*)-?"
        + d2
    )
    found = pattern.search(text) is not None
    logger.debug("uses_encryption: %s", found)
    return found
