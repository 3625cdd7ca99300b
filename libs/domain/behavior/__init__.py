from .build import Builder, platform_cells
from .deliver import Deliverer
from .executor import BehaviorExecutor
from .harvest import Harvester, HarvestResult

__all__ = [
    "BehaviorExecutor",
    "Builder",
    "Deliverer",
    "Harvester",
    "HarvestResult",
    "platform_cells",
]
