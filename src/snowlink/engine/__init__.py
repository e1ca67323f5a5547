"""Engine module for snowlink."""

from .adapter import (
    WarehouseAdapter,
    WarehouseError,
    SnowflakeAdapter,
    DryRunWarehouseAdapter,
)
from .cloud import CloudAdapter, CloudError, GCPAdapter, DryRunCloudAdapter
from .runner import ProvisioningRunner, ProvisioningError, StepResult

__all__ = [
    "WarehouseAdapter",
    "WarehouseError",
    "SnowflakeAdapter",
    "DryRunWarehouseAdapter",
    "CloudAdapter",
    "CloudError",
    "GCPAdapter",
    "DryRunCloudAdapter",
    "ProvisioningRunner",
    "ProvisioningError",
    "StepResult",
]
