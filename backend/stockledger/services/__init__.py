# Services module

from stockledger.services.sales import CartLine, SaleRequest
from stockledger.services.unit_conversion_service import UnitConversionService
from stockledger.services.recipe_resolver import RecipeResolver, Requirement, ResolvedCart
from stockledger.services.mapping_validator import MappingValidator, RepairResult
from stockledger.services.availability_service import (
    AvailabilityResult,
    AvailabilityService,
    ProductCapacity,
    Shortfall,
)
from stockledger.services.deduction_service import CommitResult, DeductionExecutor
from stockledger.services.offline_queue_service import OfflineQueueService, ReplayResult
from stockledger.services.movement_ledger import HistoryCheck, MovementFilter, MovementLedger
