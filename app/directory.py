"""
Resolution of contractor-supplied unit numbers to buildings.

A unit must first exist in the valid_units registry; its building is then
the one whose code matches the unit's first character. The side token is
carried along but does not take part in resolution.
"""

import enum
import logging
from typing import NamedTuple, Optional

from sqlalchemy.orm import Session

from app.storage import get_building_by_code, get_valid_unit

logger = logging.getLogger(__name__)


class ResolutionFailure(str, enum.Enum):
    UNIT_UNKNOWN = "unit_unknown"
    BUILDING_UNMAPPED = "building_unmapped"


class Resolution(NamedTuple):
    building: Optional[object] = None
    failure: Optional[ResolutionFailure] = None

    @property
    def found(self) -> bool:
        return self.building is not None


def resolve_unit(db: Session, unit_number: str, side: Optional[str] = None) -> Resolution:
    """
    Map a unit number to its Building.

    Args:
        db: Database session
        unit_number: Upper-cased unit code such as "B2G"
        side: "north" or "south"; accepted for every unit

    Returns:
        Resolution with the building, or with a failure tag telling an
        unknown unit apart from a known unit whose building is missing
    """
    if get_valid_unit(db, unit_number) is None:
        logger.info(f"Unit {unit_number} not in registry")
        return Resolution(failure=ResolutionFailure.UNIT_UNKNOWN)

    building = get_building_by_code(db, unit_number[0])
    if building is None:
        logger.warning(f"No building mapped for code {unit_number[0]} (unit {unit_number})")
        return Resolution(failure=ResolutionFailure.BUILDING_UNMAPPED)

    logger.debug(f"Resolved unit {unit_number} ({side}) to building {building.id}")
    return Resolution(building=building)
