"""Result types returned to the controller layer."""

from dataclasses import dataclass, field

from .conditions import Condition, ConditionReason


@dataclass
class RealizedSubnet:
    """
    Address block and gateway computed by NSX for a pool subnet.

    Attributes:
        cidr: Realized network, e.g. "10.0.0.0/28"
        gateway_ip: Gateway address inside ``cidr``
    """

    cidr: str
    gateway_ip: str

    @property
    def prefix_length(self) -> int:
        return int(self.cidr.split("/", 1)[1])

    @property
    def gateway_cidr(self) -> str:
        """Gateway with the subnet prefix, e.g. "10.0.0.1/28"."""
        return f"{self.gateway_ip}/{self.prefix_length}"


@dataclass
class ReconcileResult:
    """
    Outcome of one reconcile of a custom resource.

    Attributes:
        path: Policy path of the primary resource (child segment)
        ip_addresses: Allocated addresses ("gateway/prefix")
        vlan: Allocated VLAN tag
        requeue: True when the caller should retry on the next cycle
        condition: Condition to write on the CR status
    """

    path: str | None = None
    ip_addresses: list[str] = field(default_factory=list)
    vlan: int | None = None
    requeue: bool = False
    condition: Condition | None = None

    @classmethod
    def pending(cls, message: str) -> "ReconcileResult":
        """Neutral "try again on the next reconcile" result."""
        return cls(
            requeue=True,
            condition=Condition(
                status=False, reason=ConditionReason.REALIZATION_PENDING, message=message
            ),
        )

    @property
    def ready(self) -> bool:
        return not self.requeue and (self.condition is None or self.condition.status)
