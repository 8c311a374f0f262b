"""Spread controller outputs over the fan vector by role"""

import logging
from typing import Dict

from fanpid.channels import ActuatorChannelVector, Role
from fanpid.estimators import round_half_up


class ActuatorMapper:
    """Turns per-role duty targets into a complete new fan vector"""

    def __init__(self, duty_differential: int = 0):
        self.duty_differential = duty_differential
        self.logger = logging.getLogger(self.__class__.__name__)

    def apply(
        self, targets: Dict[Role, float], vector: ActuatorChannelVector
    ) -> ActuatorChannelVector:
        """Build the vector to write for this tick

        Args:
            targets: Duty [%] per directly controlled role (PRIMARY, INTAKE,
                AUXILIARY). Roles absent here keep their last read value.
            vector: Fan vector read from hardware this tick

        Returns:
            A new vector. EXHAUST follows INTAKE minus the duty differential;
            RESERVED slots are copied from the input unchanged.
        """
        values: Dict[Role, int] = {}
        for role in (Role.PRIMARY, Role.INTAKE, Role.AUXILIARY):
            if role in targets:
                values[role] = round_half_up(targets[role])

        if Role.INTAKE in targets:
            values[Role.EXHAUST] = round_half_up(targets[Role.INTAKE] - self.duty_differential)

        mapped = vector.with_roles(values)
        self.logger.debug("Mapped %s -> %s", values, mapped.describe())
        return mapped
