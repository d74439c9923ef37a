"""
Composition of the pipeline steps:

    open_stack -> reduce_all
               -> load_zones -> sample (per statistic) -> assemble_all

Outputs are written only after all the steps succeed.
"""
import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import *

import attrs
import xarray as xr

from .config import PipelineConfig
from .errors import PipelineCtx, SourceIOError
from .grid import Grid, GridStack
from .grid_source import open_stack
from .logger import get_logger
from .reduce import reduce_all
from .sampler import ZonalSamples, sample
from .series import TimeSeriesRecord, assemble_all
from .tools import report
from .zones import Zone, load_zones

log = logging.getLogger(__name__)


@attrs.define(frozen=True)
class PipelineResult:
    stack: GridStack
    zones: List[Zone]
    reduced: Dict[str, Grid]
    samples: Dict[str, ZonalSamples]
    records: List[TimeSeriesRecord]
    outputs: List[Path] = attrs.field(factory=list)


def _file_name(name: str) -> str:
    return re.sub(r'[^\w.-]+', '_', name).strip('_') or "zone"


def reduced_dataset(reduced: Dict[str, Grid]) -> xr.Dataset:
    return xr.Dataset({grid.name: grid.to_dataarray() for grid in reduced.values()})


def _replace(source: Path, target: Path):
    if target.is_dir() and not target.is_symlink():
        shutil.rmtree(target)
    elif target.exists():
        target.unlink()
    shutil.move(str(source), str(target))


def write_outputs(config: PipelineConfig, result: PipelineResult) -> List[Path]:
    """
    Write the reduced grids and the series files into the output directory.
    Files are written into a staging directory first and moved into place
    only after all of them were written, a failure leaves no output behind.
    """
    out_cfg = config.output
    out_dir = Path(config.resolve(out_cfg.dir or "."))
    ctx = PipelineCtx("output", [str(out_dir)])
    stage = None
    try:
        out_dir.parent.mkdir(parents=True, exist_ok=True)
        stage = Path(tempfile.mkdtemp(prefix=".gz_stage_", dir=out_dir.parent))
        staged = []
        if out_cfg.grids and result.reduced:
            path = stage / out_cfg.grids
            path.parent.mkdir(parents=True, exist_ok=True)
            ds = reduced_dataset(result.reduced)
            if path.suffix == '.zarr':
                ds.to_zarr(path, mode='w')
            else:
                ds.to_netcdf(path)
            staged.append(path)
        for record in result.records:
            path = stage / out_cfg.series.format(zone=_file_name(record.zone))
            staged.append(record.to_csv(path))

        outputs = []
        for path in staged:
            target = out_dir / path.relative_to(stage)
            target.parent.mkdir(parents=True, exist_ok=True)
            _replace(path, target)
            outputs.append(target)
    except OSError as e:
        raise ctx.error(f"Can not write outputs: {e}", SourceIOError) from e
    finally:
        if stage is not None:
            shutil.rmtree(stage, ignore_errors=True)
    for path in outputs:
        log.info(f"Written {path}")
    return outputs


@report
def run(config: PipelineConfig, write: bool = True) -> PipelineResult:
    """
    Run the whole pipeline configured by `config`.
    Zonal sampling is skipped if no zones file is configured.
    """
    run_log = get_logger(config.workdir, "grid_zones")
    run_log.info(f"Pipeline run, config: {config.file or '<memory>'}")

    stack = open_stack(config=config)
    reduced = reduce_all(stack, config.reduce)

    zones, samples, records = [], {}, []
    if config.zones.path is not None:
        zones = load_zones(config=config)
        for stat in config.statistics:
            samples[stat.value] = sample(stack, zones, stat, n_jobs=config.n_jobs)
        if samples:
            records = assemble_all(stack, list(samples.values()))
    else:
        log.warning("No ZONES path configured, zonal sampling skipped.")

    result = PipelineResult(stack, zones, reduced, samples, records)
    if write:
        result = attrs.evolve(result, outputs=write_outputs(config, result))
    run_log.info(f"Pipeline done: {len(stack)} slices, {len(zones)} zones, "
                 f"{len(result.outputs)} outputs.")
    return result
