# SQLAlchemy models
from .base import Base
from .concepts import ConceptMasteryModel, KnowledgeGapModel
from .review import (
    ReviewCardConcept,
    ReviewCardModel,
    ReviewLogModel,
    ReviewSessionModel,
    UserSrsSettingsModel,
)

__all__ = [
    # Base
    "Base",
    # Scheduling
    "ReviewCardModel",
    "ReviewCardConcept",
    "ReviewLogModel",
    "ReviewSessionModel",
    "UserSrsSettingsModel",
    # Oracle inputs
    "KnowledgeGapModel",
    "ConceptMasteryModel",
]
