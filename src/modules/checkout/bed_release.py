"""Room/Bed Management hook called inside the checkout transaction."""

import logging
from datetime import date
from typing import Protocol

logger = logging.getLogger(__name__)


class BedReleaseHandler(Protocol):
    """
    Frees the bed of a student who is checking out.

    Raising aborts the checkout: the ledger entries and status change are
    rolled back with it.
    """

    async def release_bed(
        self,
        student_id: str,
        room_number: str | None,
        bed_number: str | None,
        checkout_date: date,
    ) -> None: ...


class LoggingBedReleaseHandler:
    """Default handler: room management picks the release up from the log."""

    async def release_bed(
        self,
        student_id: str,
        room_number: str | None,
        bed_number: str | None,
        checkout_date: date,
    ) -> None:
        logger.info(
            "Bed release requested: student=%s room=%s bed=%s date=%s",
            student_id, room_number or "-", bed_number or "-", checkout_date,
        )


def get_bed_release_handler() -> BedReleaseHandler:
    """Dependency; override to plug in a real room management client."""
    return LoggingBedReleaseHandler()
