"""
Verification check - is a model recorded as fully imported into a destination
"""

import structlog

from ..schemas.models import ImportStatus, VerificationResult
from .metadata_store import MetadataDocumentStore

logger = structlog.get_logger(__name__)


class VerificationCheck:
    def __init__(self, metadata: MetadataDocumentStore):
        self.metadata = metadata

    async def verify(self, destination: str, model_id: str) -> VerificationResult:
        document = await self.metadata.load(destination)
        if document is None:
            return VerificationResult(
                verified=False,
                error=f"No metadata document found in {destination}.",
            )

        records = [m for m in document.models if m.id == model_id]
        if not records:
            return VerificationResult(
                verified=False,
                error=f"Model {model_id} is not recorded in {destination}.",
            )

        if any(m.status == ImportStatus.COMPLETED for m in records):
            return VerificationResult(verified=True)

        status = records[-1].status.value
        logger.debug("Model not verified", destination=destination, model_id=model_id, status=status)
        return VerificationResult(
            verified=False,
            error=f"Model {model_id} is recorded with status '{status}', not 'completed'.",
        )
