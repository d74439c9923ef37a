# Use of relative imports is recomended in __init__.py
from . import units
from .errors import (GridZonesError, FormatError, EmptyStackError, NoPolygonsError,
                     ConfigError, SourceIOError, PipelineWarning, PipelineCtx)
from .grid import Grid, GridStack, Aggregate, Extent
from .reduce import Statistic, reduce, reduce_all
from .config import PipelineConfig, SourceConfig, ZoneConfig, OutputConfig, deserialize
from .grid_source import open_stack, stack_from_dataset
from .zones import Zone, load_zones, zones_from_geometries, zones_from_geodataframe
from .sampler import ZonalSamples, sample, cell_counts
from .series import SeriesEntry, TimeSeriesRecord, assemble, assemble_all
from .pipeline import PipelineResult, run

try:
    from . import plot
except ModuleNotFoundError as e:
    if hasattr(e, '__optional_dependency__'):
        pass
    else:
        raise e

# What is allowed to be imported by
# from grid_zones import *
__all__ = [
    'Grid', 'GridStack', 'Aggregate', 'Statistic',
    'open_stack', 'reduce', 'reduce_all', 'load_zones', 'sample', 'assemble', 'assemble_all',
    'PipelineConfig', 'deserialize', 'run',
    'GridZonesError', 'FormatError', 'EmptyStackError', 'NoPolygonsError',
    'ConfigError', 'SourceIOError', 'PipelineWarning',
]
