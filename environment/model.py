from dataclasses import dataclass
import math


@dataclass
class SimulationConfig:
    outside_temp_base_c: float = 27.0
    outside_temp_swing_c: float = 7.0
    outside_temp_period_s: float = 24.0 * 3600.0
    outside_humidity_pct: float = 70.0

    # Coop air relaxes toward outside temperature with this time constant
    thermal_tau_s: float = 1800.0
    fan_cooling_c_per_min: float = 0.35
    heat_lamp_c_per_min: float = 0.45
    fan_drying_pct_per_min: float = 0.5

    bird_count: int = 10
    feed_g_per_bird_day: float = 150.0
    water_ml_per_bird_day: float = 200.0

    feed_hopper_capacity_g: float = 5000.0
    feeder_flow_g_s: float = 50.0
    main_tank_capacity_ml: float = 20000.0
    drinker_capacity_ml: float = 3000.0
    pump_flow_ml_s: float = 100.0


@dataclass
class CoopState:
    temperature_c: float = 28.0
    humidity_pct: float = 65.0
    feed_g: float = 2500.0
    water_main_ml: float = 15000.0
    water_drinker_ml: float = 1500.0

    fan_on: bool = False
    heat_on: bool = False
    pump_on: bool = False
    feeder_open: bool = False

    sim_time_s: float = 0.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _outside_temp(sim_time_s: float, config: SimulationConfig) -> float:
    phase = (sim_time_s % config.outside_temp_period_s) / config.outside_temp_period_s
    # coldest at 03:00, warmest at 15:00
    return config.outside_temp_base_c + config.outside_temp_swing_c * math.sin(2.0 * math.pi * (phase - 0.375))


def level_pct(amount: float, capacity: float) -> float:
    if capacity <= 0:
        return 0.0
    return _clamp(100.0 * amount / capacity, 0.0, 100.0)


def step(state: CoopState, config: SimulationConfig, dt_s: float) -> None:
    """
    Advance the coop dt_s seconds.
    Temperature relaxes toward the outside air and is pushed by fan / heat lamp;
    feed and water are consumed by the flock and refilled by feeder / pump.
    """
    state.sim_time_s += dt_s
    dt_min = dt_s / 60.0

    # TEMPERATURE
    outside_temp = _outside_temp(state.sim_time_s, config)
    relax = 1.0 - math.exp(-dt_s / config.thermal_tau_s)
    state.temperature_c += (outside_temp - state.temperature_c) * relax
    if state.fan_on:
        state.temperature_c -= config.fan_cooling_c_per_min * dt_min
    if state.heat_on:
        state.temperature_c += config.heat_lamp_c_per_min * dt_min
    state.temperature_c = _clamp(state.temperature_c, 5.0, 45.0)

    # HUMIDITY
    state.humidity_pct += (config.outside_humidity_pct - state.humidity_pct) * relax
    if state.fan_on:
        state.humidity_pct -= config.fan_drying_pct_per_min * dt_min
    state.humidity_pct = _clamp(state.humidity_pct, 0.0, 100.0)

    # FEED
    feed_rate_g_s = config.bird_count * config.feed_g_per_bird_day / 86400.0
    state.feed_g = max(0.0, state.feed_g - feed_rate_g_s * dt_s)
    if state.feeder_open:
        state.feed_g = min(config.feed_hopper_capacity_g, state.feed_g + config.feeder_flow_g_s * dt_s)

    # WATER
    water_rate_ml_s = config.bird_count * config.water_ml_per_bird_day / 86400.0
    if state.temperature_c > 30.0:
        water_rate_ml_s *= 1.2
    state.water_drinker_ml = max(0.0, state.water_drinker_ml - water_rate_ml_s * dt_s)
    if state.pump_on:
        transfer = min(state.water_main_ml, config.pump_flow_ml_s * dt_s)
        transfer = min(transfer, config.drinker_capacity_ml - state.water_drinker_ml)
        transfer = max(0.0, transfer)
        state.water_main_ml -= transfer
        state.water_drinker_ml += transfer
