"""Interpretation of a Completed job's raw result payload.

The remote worker may flip a job to Completed before the result payload is
written, so "unparseable" means "not materialized yet" rather than an error.
"""

import json
from typing import Any, Optional

from jobtracker.core.models.job import JobKind, ParsedResult
from jobtracker.core.settings import logger

SUCCESS_SENTINEL = "Success"

# Kinds whose useful outcome is the structured payload itself; a bare sentinel
# from them still counts as success but carries no data.
DATA_BEARING_KINDS = frozenset({JobKind.balance_batch_fetch})


class ResultParser:
    """Decides between "real result" and "not ready yet" for a raw payload.

    Rules, in order:
    1. empty or absent payload -> not ready
    2. the sentinel success marker -> ready, success, empty payload
    3. a JSON object or array -> ready; success read from the `success` field
    4. anything else -> not ready
    """

    def __init__(self, sentinel: str = SUCCESS_SENTINEL):
        self.sentinel = sentinel

    def parse(self, raw_result: Optional[str], kind: JobKind) -> ParsedResult:
        if raw_result is None or not raw_result.strip():
            return ParsedResult.not_ready()

        if raw_result == self.sentinel:
            if kind in DATA_BEARING_KINDS:
                logger.warning(
                    f"[result] {kind} job returned '{self.sentinel}' instead of structured data"
                )
            return ParsedResult(ready=True, success=True, payload={})

        try:
            data = json.loads(raw_result)
        except (ValueError, TypeError):
            logger.debug(f"[result] payload not parseable yet kind={kind} head={raw_result[:60]!r}")
            return ParsedResult.not_ready()

        if isinstance(data, dict):
            return ParsedResult(ready=True, success=self._success_of(data), payload=data)
        if isinstance(data, list):
            return ParsedResult(ready=True, success=True, payload={"items": data})

        # JSON scalars ("42", "true") are not structured results
        return ParsedResult.not_ready()

    @staticmethod
    def _success_of(data: dict[str, Any]) -> bool:
        indicator = data.get("success")
        if isinstance(indicator, bool):
            return indicator
        if indicator is not None:
            return str(indicator).strip().lower() in {"true", "1", "yes", "ok"}
        # no indicator: a populated `error` field is the only failure signal
        return not data.get("error")
