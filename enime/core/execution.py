import random
import time

runtime = {
    "deterministic_time_mode": False,
    "frozen_time": 0.0,
    "random": random.Random(),
}


def setup_runtime(deterministic_time_mode: bool = False):
    """
    Process-wide runtime setup, called once on startup (and once in every
    worker process).

    In deterministic time mode the clock stops at a frozen timestamp that only
    moves through `advance_time`, and the random source is seeded so proxy
    rotation is reproducible.
    """
    runtime["deterministic_time_mode"] = bool(deterministic_time_mode)
    runtime["frozen_time"] = 0.0
    runtime["random"] = (
        random.Random(0) if deterministic_time_mode else random.Random()
    )


def now() -> float:
    if runtime["deterministic_time_mode"]:
        return runtime["frozen_time"]
    return time.time()


def advance_time(seconds: float):
    runtime["frozen_time"] += seconds


def get_random() -> random.Random:
    return runtime["random"]
