"""Per-collection count and redacted sampling."""

from __future__ import annotations

import asyncio
import logging

from .config import RedactionPolicy, SamplingPolicy
from .connections import ConnectionHandle
from .errors import ProbeError
from .models import CollectionSummary
from .redaction import PreviewContext, redact_document

LOG = logging.getLogger(__name__)


async def probe_collection(
    handle: ConnectionHandle,
    name: str,
    *,
    sampling: SamplingPolicy,
    redaction: RedactionPolicy,
    timeout: float,
) -> CollectionSummary:
    """Count a collection and pull a bounded, redacted sample.

    Collections at or below ``sampling.small_threshold`` are sampled in full;
    larger ones get ``sampling.window`` documents and are flagged as
    truncated. Read failures and timeouts yield an unknown count instead of
    raising.
    """

    try:
        count = await asyncio.wait_for(handle.count(name), timeout=timeout)
        if count == 0:
            return CollectionSummary(name=name, count=0)
        if count <= sampling.small_threshold:
            limit, truncated, context = count, False, PreviewContext.FULL
        else:
            limit, truncated, context = sampling.window, True, PreviewContext.SAMPLE
        documents = await asyncio.wait_for(handle.sample(name, limit), timeout=timeout)
    except ProbeError as exc:
        LOG.info("Collection probe failed", extra={"collection": name, "error": str(exc)})
        return CollectionSummary(name=name, count=None, error=str(exc))
    except asyncio.TimeoutError:
        LOG.info("Collection probe timed out", extra={"collection": name, "timeout": timeout})
        return CollectionSummary(name=name, count=None, error=f"timed out after {timeout:g}s")
    samples = tuple(redact_document(document, redaction, context) for document in documents[:limit])
    return CollectionSummary(name=name, count=count, samples=samples, truncated=truncated)


__all__ = ["probe_collection"]
