"""Fan channel roles and the fixed-length duty vector exchanged with the BMC"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Tuple

from fanpid.errors import ConfigError, GatewayReadError

# Duty value the BMC treats as "hand this fan back to firmware control"
AUTO_DUTY = 0

DEFAULT_VECTOR_LENGTH = 8


class Role(Enum):
    """What a fan header cools, as wired in the chassis"""

    PRIMARY = "primary"  # CPU heatsink fans
    INTAKE = "intake"  # front, blowing over the drive cage
    EXHAUST = "exhaust"  # rear, always derived from intake
    AUXILIARY = "auxiliary"  # HBA / add-in card fans
    RESERVED = "reserved"  # empty headers, never written by the controller


CONTROLLED_ROLES = (Role.PRIMARY, Role.INTAKE, Role.EXHAUST, Role.AUXILIARY)


@dataclass(frozen=True)
class ChannelLayout:
    """Mapping of roles to slot indices in the BMC fan vector

    The layout must match the physical wiring of the board. Slots not claimed
    by any controlled role are reserved.
    """

    length: int
    slots: Dict[Role, Tuple[int, ...]] = field(default_factory=dict)

    @classmethod
    def from_lists(
        cls, length: int, role_slots: Dict[Role, Iterable[int]]
    ) -> "ChannelLayout":
        """Build and validate a layout, raising ConfigError on bad wiring"""
        if length <= 0:
            raise ConfigError(f"Fan vector length must be positive, got {length}")

        owner: Dict[int, Role] = {}
        slots: Dict[Role, Tuple[int, ...]] = {}
        for role in CONTROLLED_ROLES:
            indices = tuple(int(i) for i in role_slots.get(role, ()))
            for index in indices:
                if not 0 <= index < length:
                    raise ConfigError(
                        f"{role.value} slot {index} outside fan vector of length {length}"
                    )
                if index in owner:
                    raise ConfigError(
                        f"Slot {index} assigned to both {owner[index].value} and {role.value}"
                    )
                owner[index] = role
            slots[role] = indices

        slots[Role.RESERVED] = tuple(i for i in range(length) if i not in owner)
        return cls(length=length, slots=slots)

    def indices(self, role: Role) -> Tuple[int, ...]:
        return self.slots.get(role, ())

    def role_of(self, index: int) -> Role:
        for role, indices in self.slots.items():
            if index in indices:
                return role
        return Role.RESERVED

    def controlled_indices(self) -> List[int]:
        return sorted(i for role in CONTROLLED_ROLES for i in self.indices(role))


@dataclass(frozen=True)
class ActuatorChannelVector:
    """Immutable snapshot of every fan duty slot, in BMC wire order"""

    layout: ChannelLayout
    duties: Tuple[int, ...]

    def __post_init__(self):
        if len(self.duties) != self.layout.length:
            raise ValueError(
                f"Expected {self.layout.length} duty slots, got {len(self.duties)}"
            )

    @classmethod
    def from_raw(cls, tokens: Sequence[str], layout: ChannelLayout) -> "ActuatorChannelVector":
        """Parse whitespace-split hex bytes as printed by `ipmitool raw`

        Raises:
            GatewayReadError: If fewer than layout.length tokens are given or
                a token is not a hex byte. Extra trailing tokens are ignored.
        """
        if len(tokens) < layout.length:
            raise GatewayReadError(
                f"Fan vector read returned {len(tokens)} fields, expected {layout.length}"
            )

        duties = []
        for token in tokens[: layout.length]:
            try:
                value = int(token, 16)
            except ValueError as e:
                raise GatewayReadError(f"Invalid fan vector field {token!r}") from e
            if not 0 <= value <= 0xFF:
                raise GatewayReadError(f"Fan vector field {token!r} is not a byte")
            duties.append(value)

        return cls(layout=layout, duties=tuple(duties))

    def to_raw(self) -> List[str]:
        """Serialize to the `0xNN` byte arguments of a raw write"""
        return [f"0x{duty:02x}" for duty in self.duties]

    def role_values(self, role: Role) -> List[int]:
        return [self.duties[i] for i in self.layout.indices(role)]

    def with_roles(self, values: Dict[Role, int]) -> "ActuatorChannelVector":
        """Return a copy where every slot of each given role holds its value"""
        duties = list(self.duties)
        for role, value in values.items():
            if role is Role.RESERVED:
                raise ValueError("Reserved slots are never written")
            for index in self.layout.indices(role):
                duties[index] = int(value)
        return ActuatorChannelVector(layout=self.layout, duties=tuple(duties))

    def describe(self) -> str:
        parts = []
        for role in CONTROLLED_ROLES + (Role.RESERVED,):
            values = self.role_values(role)
            if values:
                parts.append(f"{role.value}={values}")
        return ", ".join(parts)
