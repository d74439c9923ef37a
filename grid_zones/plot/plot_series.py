from typing import *

import matplotlib.pyplot as plt

from ..series import TimeSeriesRecord


def plot_series(records: Union[TimeSeriesRecord, Sequence[TimeSeriesRecord]],
                statistic: str = 'mean', ax=None):
    """
    Line chart of one statistic, a line per zone. Gaps (NaN) break the line.
    Returns the matplotlib Axes.
    """
    if isinstance(records, TimeSeriesRecord):
        records = [records]
    if ax is None:
        fig, ax = plt.subplots()
    unit = None
    for record in records:
        ax.plot(record.times, record.values(statistic), marker='o', label=record.zone)
        unit = unit or record.unit
    ax.set_xlabel("time")
    ax.set_ylabel(f"{statistic} [{unit}]" if unit else statistic)
    if len(records) > 1:
        ax.legend()
    return ax
