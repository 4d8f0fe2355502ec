"""
Registry core: checks, models, contracts and the publisher facade.

- checks: independent validation steps returning tagged results
- models: the check / publish / delete state machine
- contracts: filtered sub-schemas of federated targets
- manager / version_helper: version reads and non-publish writes
- publisher: locking, idempotency, persistence, CDN and GitHub
"""

from .checks import RegistryChecks
from .contracts import ContractsManager
from .inputs import CheckInput, DeleteInput, PublishInput, UpdateVersionStatusInput
from .manager import SchemaManager
from .publisher import SchemaPublisher
from .results import SKIPPED, CheckResult, Completed, Failed, Skipped
from .version_helper import SchemaVersionHelper

__all__ = [
    "RegistryChecks",
    "ContractsManager",
    "CheckInput",
    "DeleteInput",
    "PublishInput",
    "UpdateVersionStatusInput",
    "SchemaManager",
    "SchemaPublisher",
    "SKIPPED",
    "CheckResult",
    "Completed",
    "Failed",
    "Skipped",
    "SchemaVersionHelper",
]
