"""Display-safe rendering of connection strings and documents."""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Iterable, Mapping

from bson import json_util

from .config import RedactionPolicy
from .errors import RenderError

LOG = logging.getLogger(__name__)

USERINFO_MASK = "***:***"
USER_MASK = "***"
ELLIPSIS = "..."
PLACEHOLDER = "<unrenderable document>"

_URI_PATTERN = re.compile(r"mongodb(?:\+srv)?://\S+")


class PreviewContext(str, Enum):
    """Which preview budget applies to a sampled document."""

    SAMPLE = "sample"
    FULL = "full"


def redact_uri(uri: str) -> str:
    """Mask the ``user:password@`` segment of a connection URI."""

    bounds = _userinfo_bounds(uri)
    if bounds is None:
        return uri
    start, at = bounds
    mask = USERINFO_MASK if ":" in uri[start:at] else USER_MASK
    return f"{uri[:start]}{mask}{uri[at:]}"


def redact_text(text: str, uris: Iterable[str] = ()) -> str:
    """Scrub connection strings and their passwords out of free text."""

    for uri in uris:
        if not uri:
            continue
        text = text.replace(uri, redact_uri(uri))
        password = _password_of(uri)
        if password:
            # Whole tokens only, so short passwords do not eat into ordinary words.
            text = re.sub(rf"(?<!\w){re.escape(password)}(?!\w)", USER_MASK, text)
    return _URI_PATTERN.sub(lambda match: redact_uri(match.group(0)), text)


def redact_document(
    document: Any,
    policy: RedactionPolicy,
    context: PreviewContext = PreviewContext.SAMPLE,
) -> str:
    """Render a document for display, surfacing identity fields only.

    Documents carrying any of the policy's identity fields are shown as
    ``Label: value`` pairs for those fields alone. Anything else becomes a
    JSON preview. Either form is cut to the context's budget with a trailing
    ellipsis, and serialization failures collapse to a fixed placeholder.
    """

    budget = policy.budget_for(context.value)
    try:
        text = _identity_preview(document, policy.identity_fields)
        if text is None:
            text = _json_preview(document, frozenset(policy.masked_fields))
    except RenderError as exc:
        LOG.debug("Falling back to placeholder", extra={"reason": str(exc)})
        text = PLACEHOLDER
    return truncate(text, budget)


def truncate(text: str, budget: int) -> str:
    if len(text) <= budget:
        return text
    return text[:budget] + ELLIPSIS


def _identity_preview(document: Any, fields: Iterable[str]) -> str | None:
    if not isinstance(document, Mapping):
        return None
    try:
        parts = [
            f"{_label(field)}: {document[field]}"
            for field in fields
            if document.get(field) not in (None, "")
        ]
    except Exception as exc:  # pragma: no cover - exotic mapping types
        raise RenderError(f"Cannot read identity fields: {exc}") from exc
    if not parts:
        return None
    return ", ".join(parts)


def _json_preview(document: Any, masked: frozenset[str]) -> str:
    try:
        return json_util.dumps(_mask(document, masked))
    except Exception as exc:
        raise RenderError(f"Cannot serialize document: {exc.__class__.__name__}") from exc


def _mask(value: Any, masked: frozenset[str]) -> Any:
    if isinstance(value, Mapping):
        return {
            key: USER_MASK if key in masked else _mask(item, masked)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_mask(item, masked) for item in value]
    return value


def _label(field: str) -> str:
    return field.replace("_", " ").capitalize()


def _userinfo_bounds(uri: str) -> tuple[int, int] | None:
    """Return the ``(start, at)`` offsets of the userinfo segment, if any."""

    scheme_end = uri.find("://")
    start = scheme_end + 3 if scheme_end != -1 else 0
    end = len(uri)
    for separator in "/?#":
        index = uri.find(separator, start)
        if index != -1:
            end = min(end, index)
    at = uri.rfind("@", start, end)
    if at == -1 and ":" in uri[start:end]:
        # Unescaped '/' or '?' inside a password pushes the '@' past the authority.
        # An '@' inside query parameters is not userinfo.
        candidate = uri.rfind("@", start)
        query = uri.find("?", start)
        if query == -1 or "=" not in uri[query:candidate]:
            at = candidate
    if at == -1:
        return None
    return start, at


def _password_of(uri: str) -> str | None:
    bounds = _userinfo_bounds(uri)
    if bounds is None:
        return None
    start, at = bounds
    _, sep, password = uri[start:at].partition(":")
    return password if sep else None


__all__ = [
    "ELLIPSIS",
    "PLACEHOLDER",
    "PreviewContext",
    "redact_document",
    "redact_text",
    "redact_uri",
    "truncate",
]
