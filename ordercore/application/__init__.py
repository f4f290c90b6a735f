"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from ordercore.application.conversion_service import (
    ConversionService,
    get_conversion_service,
)
from ordercore.application.dispatcher import (
    BackgroundDispatcher,
    get_dispatcher,
)
from ordercore.application.duplicate_service import (
    DuplicateService,
    get_duplicate_service,
)
from ordercore.application.sweeper_service import (
    SweeperService,
    SweepSummary,
    get_sweeper_service,
)
from ordercore.application.transition_engine import (
    OrderIntake,
    TransitionEngine,
    TransitionResult,
    get_transition_engine,
)
from ordercore.application.upsell_service import (
    UpsellService,
    get_upsell_service,
)

__all__ = [
    "BackgroundDispatcher",
    "get_dispatcher",
    "ConversionService",
    "get_conversion_service",
    "DuplicateService",
    "get_duplicate_service",
    "SweeperService",
    "SweepSummary",
    "get_sweeper_service",
    "OrderIntake",
    "TransitionEngine",
    "TransitionResult",
    "get_transition_engine",
    "UpsellService",
    "get_upsell_service",
]
