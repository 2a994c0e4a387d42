"""Reconciliation services built on the synchronization core."""

from .childsubnet import ChildSubnetService
from .subnetbinding import BindingService

__all__ = ["ChildSubnetService", "BindingService"]
