try:
    import matplotlib
    import plotly
    import numpy
except ModuleNotFoundError as e:
    e.__optional_dependency__ = True
    raise e

from .plot_map import plot_grid, interactive_map
from .plot_series import plot_series
