"""
AIEventLogger - audit trail for training and scoring events.

Every event goes to the structured log first and then to the ai_events table.
Training events are best-effort: a failed insert is logged with enough context
to rebuild the row and the job carries on. Scoring events are written with
``required=True`` because they are also the quota usage record, so a failed
insert there propagates.
"""

from typing import Any

from fitscore.infrastructure.observability.logging import get_logger
from fitscore.repositories.ai_event_repository import AIEventRepository

logger = get_logger(__name__)


class AIEventLogger:
    @staticmethod
    async def log(
        tenant_id: str,
        event_type: str,
        object_type: str,
        object_id: str,
        *,
        classification: str | None = None,
        score: float | None = None,
        prompt: str | None = None,
        response: dict[str, Any] | None = None,
        document_data: dict[str, Any] | None = None,
        required: bool = False,
    ) -> bool:
        """
        Record an AI event.

        Returns:
            True if the row was written, False if a best-effort write failed
        """
        logger.info(
            "AI event",
            event_type=event_type,
            tenant_id=tenant_id,
            object_type=object_type,
            object_id=object_id,
            classification=classification,
            score=score,
        )

        try:
            await AIEventRepository.insert_event(
                tenant_id,
                event_type,
                object_type,
                object_id,
                classification=classification,
                score=score,
                prompt=prompt,
                response=response,
                document_data=document_data,
            )
            return True
        except Exception as e:
            if required:
                raise
            logger.error(
                "Failed to write AI event",
                error=str(e),
                error_type=type(e).__name__,
                fallback_data={
                    "tenant_id": tenant_id,
                    "event_type": event_type,
                    "object_type": object_type,
                    "object_id": object_id,
                    "classification": classification,
                },
            )
            return False

    @staticmethod
    async def log_training(
        tenant_id: str, object_type: str, object_id: str, classification: str, metadata: dict
    ) -> bool:
        return await AIEventLogger.log(
            tenant_id,
            "train",
            object_type,
            object_id,
            classification=classification,
            document_data=metadata,
        )


ai_event_logger = AIEventLogger()
