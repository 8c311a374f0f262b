"""
Incremental PID Controller for Fan Duty
=======================================

The controller works on temperature error in °C and produces a fan duty in
percent. It is incremental: each tick adds its correction to the duty applied
on the previous tick instead of recomputing the duty from absolute error.

Discrete-time update, with T the tick interval in minutes:

    e[k]  = PV[k] - SP[k]                  (clamped to >= 0 when cooling only)
    P[k]  = Kp * e[k]
    S[k]  = e[k] * T + S[k-1]              (running error-time sum)
    I[k]  = Ki * S[k]
    D[k]  = Kd * (e[k] - e[k-1]) / T
    u[k]  = clamp(round(u[k-1] + P[k] + I[k] + D[k]), u_min, u_max)

Where:
    PV: Process variable (representative group temperature) [°C]
    SP: Setpoint [°C]
    u:  Fan duty [%]

What is carried in state as the integral depends on IntegralConvention:
UNSCALED threads S[k] (so a new Ki applies to the whole history), SCALED
threads I[k] itself, I[k] = Ki * (e[k] * T + I[k-1]).

u[k-1] must be seeded with a real duty at startup (the duty the loop forced
on initialization), never 0.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Tuple

from fanpid.estimators import round_half_up


class IntegralConvention(Enum):
    """Which quantity is carried between ticks as the integral"""

    UNSCALED = "unscaled"
    SCALED = "scaled"


@dataclass(frozen=True)
class ControllerState:
    """Values threaded from one tick to the next"""

    previous_error: float = 0.0
    previous_integral: float = 0.0
    previous_derivative: float = 0.0
    previous_output: float = 100.0
    tick_interval: float = 5.0  # minutes


@dataclass(frozen=True)
class PIDSettings:
    """Gains and output limits for one controller instance"""

    kp: float
    ki: float
    kd: float
    min_duty: int
    max_duty: int
    # Exhaust fans run at intake - duty_differential; raising the intake
    # floor keeps the derived exhaust duty at or above min_duty
    duty_differential: int = 0
    feeds_differential: bool = False
    cooling_only: bool = False
    integral_convention: IntegralConvention = IntegralConvention.UNSCALED

    @property
    def effective_min_duty(self) -> int:
        if self.feeds_differential:
            return self.min_duty + self.duty_differential
        return self.min_duty


@dataclass(frozen=True)
class TickTerms:
    """Breakdown of one tick, kept for logging"""

    error: float
    proportional: float
    integral: float
    derivative: float
    unqualified_output: float
    output: int


class PIDController:
    """Pure incremental PID: tick() maps (PV, SP, state) to (duty, new state)"""

    def __init__(self, settings: PIDSettings, state: ControllerState):
        self.settings = settings
        self.state = state
        self.last_terms = None

    def compute(
        self, process_variable: float, setpoint: float, state: ControllerState
    ) -> Tuple[int, ControllerState, TickTerms]:
        """Run one controller step without touching self.state"""
        s = self.settings
        dt = state.tick_interval

        error = process_variable - setpoint
        if s.cooling_only and process_variable <= setpoint:
            error = 0.0

        proportional = error * s.kp

        if s.integral_convention is IntegralConvention.UNSCALED:
            accumulated = error * dt + state.previous_integral
            integral = s.ki * accumulated
            carried_integral = accumulated
        else:
            integral = s.ki * (error * dt + state.previous_integral)
            carried_integral = integral

        derivative = s.kd * (error - state.previous_error) / dt

        unqualified = state.previous_output + proportional + integral + derivative
        output = max(s.effective_min_duty, min(s.max_duty, round_half_up(unqualified)))

        new_state = replace(
            state,
            previous_error=error,
            previous_integral=carried_integral,
            previous_derivative=derivative,
            previous_output=float(output),
        )
        terms = TickTerms(
            error=error,
            proportional=proportional,
            integral=integral,
            derivative=derivative,
            unqualified_output=unqualified,
            output=output,
        )
        return output, new_state, terms

    def tick(self, process_variable: float, setpoint: float) -> Tuple[int, ControllerState]:
        """Advance the controller by one tick and keep the resulting state

        Returns:
            Clamped duty [%] and the new controller state
        """
        output, new_state, terms = self.compute(process_variable, setpoint, self.state)
        self.state = new_state
        self.last_terms = terms
        return output, new_state
