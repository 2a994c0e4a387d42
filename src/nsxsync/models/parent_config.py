"""Parent configuration snapshot of an upstream virtual network."""

from dataclasses import dataclass, field


@dataclass
class ParentConfig:
    """
    Topology context for child subnets of one virtual network.

    Attributes:
        id: UID of the virtual network
        name: Virtual network name
        namespace: Virtual network namespace
        tier1_path: Routing tier the parent segments connect to
        transport_zone_path: Transport zone of the parent segments
        segment_paths: Policy paths of all parent segments
        public_ip_block_path: Block used for Public child subnets
        private_ip_block_path: Block used for every other access mode
        marked_for_delete: Tombstone flag for the parent config store
    """

    id: str
    name: str
    namespace: str
    tier1_path: str = ""
    transport_zone_path: str = ""
    segment_paths: set[str] = field(default_factory=set)
    public_ip_block_path: str = ""
    private_ip_block_path: str = ""
    marked_for_delete: bool = False

    @property
    def namespaced_name(self) -> str:
        return f"{self.namespace}/{self.name}"

    def set_ip_block_paths(self, private_path: str, public_path: str) -> None:
        self.private_ip_block_path = private_path
        self.public_ip_block_path = public_path

    def key(self) -> str:
        return self.id

    def equals(self, other: "ParentConfig | None") -> bool:
        """Value comparison with set equality over segment paths."""
        if other is None:
            return False
        return (
            self.id == other.id
            and self.namespace == other.namespace
            and self.name == other.name
            and self.tier1_path == other.tier1_path
            and self.transport_zone_path == other.transport_zone_path
            and self.public_ip_block_path == other.public_ip_block_path
            and self.private_ip_block_path == other.private_ip_block_path
            and set(self.segment_paths) == set(other.segment_paths)
        )
