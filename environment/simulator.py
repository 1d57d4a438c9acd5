import logging
import random
import threading
from dataclasses import replace
from typing import Dict

from common.clock import Clock
from common.models import SensorSnapshot
from executor.actuators import FAN, FEEDER, HEAT, PUMP
from monitor.sensor_source import build_snapshot
from environment.model import CoopState, SimulationConfig, level_pct, step

logger = logging.getLogger(__name__)

_OUTPUT_FIELDS = {FAN: "fan_on", HEAT: "heat_on", PUMP: "pump_on", FEEDER: "feeder_open"}


class SimulatedActuator:
    """ActuatorDriver that switches an output of the simulated coop."""

    def __init__(self, coop: "CoopSimulator", name: str):
        self.name = name
        self._coop = coop

    def set_on(self, on: bool) -> None:
        self._coop.set_output(self.name, on)


class CoopSimulator:
    """
    In-process coop used instead of real hardware:
    - advances the physical model between reads
    - serves noisy sensor snapshots (SensorSource)
    - exposes one simulated driver per output
    """

    def __init__(self, clock: Clock, config: SimulationConfig = None, state: CoopState = None, noise: bool = True):
        self.config = config or SimulationConfig()
        self.state = state or CoopState()
        self._clock = clock
        self._noise = noise
        self._lock = threading.Lock()
        self._last_step = clock.now()
        self._drivers: Dict[str, SimulatedActuator] = {name: SimulatedActuator(self, name) for name in _OUTPUT_FIELDS}

    def driver(self, name: str) -> SimulatedActuator:
        return self._drivers[name]

    def set_output(self, name: str, on: bool) -> None:
        with self._lock:
            self._advance()
            setattr(self.state, _OUTPUT_FIELDS[name], bool(on))
        logger.debug("Simulated %s %s", name, "ON" if on else "OFF")

    def snapshot(self) -> CoopState:
        with self._lock:
            self._advance()
            return replace(self.state)

    def _advance(self) -> None:
        now = self._clock.now()
        dt_s = (now - self._last_step).total_seconds()
        self._last_step = now
        if dt_s > 0:
            step(self.state, self.config, dt_s)

    def _gauss(self, sigma: float) -> float:
        return random.gauss(0.0, sigma) if self._noise else 0.0

    def read(self) -> SensorSnapshot:
        s = self.snapshot()
        c = self.config
        readings = {
            "temperature_c": s.temperature_c + self._gauss(0.2),
            "humidity_pct": min(100.0, max(0.0, s.humidity_pct + self._gauss(1.0))),
            "food_level_pct": level_pct(s.feed_g, c.feed_hopper_capacity_g),
            "water_main_pct": level_pct(s.water_main_ml, c.main_tank_capacity_ml),
            "water_drinker_pct": level_pct(s.water_drinker_ml, c.drinker_capacity_ml),
        }
        return build_snapshot(readings, self._clock.now())
