from hypothesis import HealthCheck, settings

# Hypothesis builds its unicode tables on first use, which can make the first
# test's input generation look slow on a cold cache.
settings.register_profile("default", suppress_health_check=[HealthCheck.too_slow])
settings.load_profile("default")
