"""Business tunables for the delivery domain.

Defaults encode platform policy. Each can be overridden per deployment through
an environment variable of the same name prefixed with ``DELIVERY_``.
"""

import os


def _int(name: str, default: int) -> int:
    return int(os.environ.get(f"DELIVERY_{name}", default))


def _float(name: str, default: float) -> float:
    return float(os.environ.get(f"DELIVERY_{name}", default))


# Order timing
AUTO_ACCEPT_WINDOW_SECONDS = _int("AUTO_ACCEPT_WINDOW_SECONDS", 5 * 60)

# SLA budgets (seconds)
VENDOR_ACCEPTANCE_BUDGET = _int("VENDOR_ACCEPTANCE_BUDGET", 5 * 60)
PREPARATION_BUDGET = _int("PREPARATION_BUDGET", 20 * 60)
PICKUP_BUDGET = _int("PICKUP_BUDGET", 10 * 60)
FOOD_DELIVERY_BUDGET = _int("FOOD_DELIVERY_BUDGET", 45 * 60)
ERRAND_DELIVERY_BUDGET = _int("ERRAND_DELIVERY_BUDGET", 60 * 60)

# Dispatch
OFFER_TTL_SECONDS = _int("OFFER_TTL_SECONDS", 30)
MAX_DISPATCH_ATTEMPTS = _int("MAX_DISPATCH_ATTEMPTS", 5)
DISPATCH_RADIUS_KM = _float("DISPATCH_RADIUS_KM", 10.0)
DEFAULT_RIDER_CAPACITY = _int("DEFAULT_RIDER_CAPACITY", 3)
OFFER_SWEEP_INTERVAL_SECONDS = _float("OFFER_SWEEP_INTERVAL_SECONDS", 5.0)

# Money
CURRENCY = os.environ.get("DELIVERY_CURRENCY", "PHP")
