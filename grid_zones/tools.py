import numpy as np

from functools import wraps
import logging
import time


def recursive_update(d, u):
    """
    Recursively update dictionary `d` with values from dictionary `u`.

    If both d[k] and u[k] are dicts, merge them recursively.
    Otherwise, overwrite d[k] with u[k].
    """
    for k, v in u.items():
        if isinstance(v, dict) and isinstance(d.get(k), dict):
            recursive_update(d[k], v)
        else:
            d[k] = v
    return d


def is_uniform(x: np.ndarray, rtol: float = 1e-3) -> bool:
    """
    True if the 1D array `x` is strictly monotonic with constant step
    (up to relative tolerance `rtol` of the mean step).
    A single point or a pair of distinct points is uniform.
    """
    if x.ndim != 1:
        raise ValueError("`x` must be 1D")
    if len(x) < 2:
        return True
    steps = np.diff(x.astype(float))
    if not (np.all(steps > 0) or np.all(steps < 0)):
        return False
    mean_step = np.mean(steps)
    return bool(np.allclose(steps, mean_step, rtol=rtol, atol=0))


__report_indent_level = 0

def report(fn):
    @wraps(fn)
    def do_report(*args, **kwargs):
        global __report_indent_level
        __report_indent_level += 1
        init_time = time.perf_counter()
        try:
            result = fn(*args, **kwargs)
        finally:
            __report_indent_level -= 1
        duration = time.perf_counter() - init_time
        indent = (__report_indent_level * 2) * " "
        logging.getLogger(fn.__module__).info(f"{indent}DONE {fn.__module__}.{fn.__name__} @ {duration:.3f}")
        return result
    return do_report
