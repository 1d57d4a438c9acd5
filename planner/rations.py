from typing import Optional

from common.models import AgeGroup, FeedingProfile

# Daily feed per bird (grams)
GRAMS_PER_BIRD = {
    AgeGroup.CHICK: 50,     # 0-8 weeks
    AgeGroup.GROWER: 100,   # 8-20 weeks
    AgeGroup.ADULT: 150,    # 20+ weeks
}

# Daily water per bird (ml)
WATER_ML_PER_BIRD = {
    AgeGroup.CHICK: 80,
    AgeGroup.GROWER: 150,
    AgeGroup.ADULT: 200,
}

HYDRATION_NORMAL = "normal"
HYDRATION_WARNING = "warning"
HYDRATION_ALERT = "alert"


def recommended_feed_grams(profile: FeedingProfile) -> int:
    return GRAMS_PER_BIRD[profile.age_group] * max(0, profile.chicken_count)


def feed_duration_s(grams: float, grams_per_second: float) -> float:
    """Feeder open time for `grams` with a linear feed-rate calibration."""
    if grams_per_second <= 0:
        return 0.0
    return grams / grams_per_second


def feed_grams(duration_s: float, grams_per_second: float) -> float:
    return max(0.0, duration_s) * grams_per_second


def recommended_water_ml(profile: FeedingProfile) -> int:
    return WATER_ML_PER_BIRD[profile.age_group] * max(0, profile.chicken_count)


def water_volume_ml(duration_s: float, flow_rate_ml_s: float) -> float:
    return max(0.0, duration_s) * flow_rate_ml_s


def pump_run_time_s(volume_ml: float, flow_rate_ml_s: float) -> float:
    if flow_rate_ml_s <= 0:
        return 0.0
    return volume_ml / flow_rate_ml_s


def hydration_status(ml_per_bird: Optional[float], alert_ml: float, warning_ml: float) -> Optional[str]:
    if ml_per_bird is None:
        return None
    if ml_per_bird < alert_ml:
        return HYDRATION_ALERT
    if ml_per_bird < warning_ml:
        return HYDRATION_WARNING
    return HYDRATION_NORMAL
