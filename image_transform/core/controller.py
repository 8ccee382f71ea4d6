"""Ties the transformation client to the health poller."""

from __future__ import annotations

from .client import TransformationClient
from .errors import TransformError
from .health import HealthPoller, HealthStatus
from .logging_utils import get_module_logger
from .specs import ImageFile, TransformationResult, TransformationSpecs

logger = get_module_logger("TransformController")


class TransformController:

    def __init__(self, client: TransformationClient, poller: HealthPoller):
        self.client = client
        self.poller = poller

    async def transform(self, image: ImageFile, specs: TransformationSpecs) -> TransformationResult:
        try:
            result = await self.client.transform(image, specs)
        except TransformError as exc:
            # the caller sees its failure right away; the probe finishes on its own
            logger.debug("Transform failed (%s), re-checking backend health", type(exc).__name__)
            self.poller.trigger()
            raise

        await self.poller.record(HealthStatus.backend_online())
        return result
