"""Parameter-store presence check."""

import logging
from collections.abc import Sequence

from ..clients import Capability

logger = logging.getLogger(__name__)

# get_parameters accepts at most 10 names per call
BATCH_SIZE = 10


class ParameterChecker:
    """Reports referenced parameters that do not exist yet."""

    def __init__(self, ssm: Capability) -> None:
        self._ssm = ssm

    async def missing(self, paths: Sequence[str]) -> list[str]:
        unique = sorted(set(paths))
        missing: list[str] = []
        for start in range(0, len(unique), BATCH_SIZE):
            response = await self._ssm.call(
                "get_parameters", Names=unique[start : start + BATCH_SIZE]
            )
            missing.extend(response.get("InvalidParameters") or [])
        return sorted(missing)
