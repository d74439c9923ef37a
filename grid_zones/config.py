"""
Pipeline configuration.

The configuration is an explicit struct passed to the pipeline steps,
it is read from a YAML file of the form:

    ATTRS:                  # options, see `interpreted_attrs`
      WORKDIR: data
    SOURCE:                 # gridded dataset
      path: sst.nc
      variable: sst
      bbox: [-20, 30, 10, 60]
      time_range: ['2020-01-01', '2020-12-31']
    ZONES:                  # polygon boundaries
      path: regions.geojson
      name_column: name
    STATISTICS: [mean, stddev]   # zonal statistics
    REDUCE: [mean, stddev]       # temporal reductions of the whole grid
    OUTPUT:
      dir: output

Options are layered, later overwrite earlier:
keyword arguments, YAML 'ATTRS', environment variables 'GZ_<KEY>',
explicit overrides (command line).
"""
import os
import re
from typing import *
from pathlib import Path

import attrs
import yaml
from dotenv import load_dotenv

from .errors import PipelineCtx, ConfigError
from .reduce import Statistic
from .tools import recursive_update

load_dotenv()

ENV_PREFIX = "GZ_"
secret_attrs = {'S3_ACCESS_KEY', 'S3_SECRET_KEY'}
interpreted_attrs = {'WORKDIR', 'LOG_LEVEL', 'N_JOBS', 'S3_ENDPOINT_URL', 'S3_OPTIONS'}.union(secret_attrs)
reserved_keys = {'ATTRS', 'SOURCE', 'ZONES', 'STATISTICS', 'REDUCE', 'OUTPUT'}


@attrs.define
class ContextCfg:
    """
    Configuration value together with its address in the configuration file.
    """
    cfg: Dict[str, Any] | List[Any]
    ctx: PipelineCtx

    def __getitem__(self, key: str | int) -> 'ContextCfg':
        return ContextCfg(self.cfg[key], self.ctx.dive(key))

    def __contains__(self, item):
        return item in self.cfg

    def value(self) -> Any:
        return self.cfg

    def keys(self):
        return self.cfg.keys()

    def get(self, key: str | int, default=None) -> 'ContextCfg':
        value = self.cfg.get(key, default)
        return ContextCfg(value, self.ctx.dive(key))

    def error(self, message: str) -> ConfigError:
        return self.ctx.error(message, ConfigError)


def _layered_options(attrs_cfg: ContextCfg, overrides: Dict[str, Any] = None, **kwargs) -> Dict[str, Any]:
    """
    Prepare options:
    - get kwargs
    - overwrite by YAML ATTRS
    - overwrite by environment variables
    - overwrite by explicit overrides
    """
    options = {key: kwargs[key] for key in interpreted_attrs if key in kwargs}

    file_options = attrs_cfg.value() or {}
    if not isinstance(file_options, dict):
        attrs_cfg.error(f"Expected a dictionary, got: {type(file_options).__name__}")
    for key in file_options:
        if key not in interpreted_attrs:
            attrs_cfg.ctx.dive(key).warning(f"Unknown option '{key}' ignored.")
    # Warning for leaking secrets
    for key in secret_attrs:
        if key in file_options:
            attrs_cfg.ctx.dive(key).warning("Possible secret leak in the configuration file.")
    options.update({key: file_options[key] for key in interpreted_attrs if key in file_options})

    e_key = lambda key: f"{ENV_PREFIX}{key}"
    env_options = {key: os.environ[e_key(key)] for key in interpreted_attrs if e_key(key) in os.environ}
    options.update(env_options)

    options.update(overrides or {})

    if 'N_JOBS' in options:
        value = options['N_JOBS']
        try:
            if isinstance(value, (bool, float)):
                raise ValueError(value)
            options['N_JOBS'] = int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"N_JOBS must be an integer, got {value!r}.",
                              PipelineCtx("config", ['ATTRS', 'N_JOBS'])) from None
    return options


def _check_keys(cfg: ContextCfg, cls) -> Dict[str, Any]:
    content = cfg.value()
    if content is None:
        return {}
    if not isinstance(content, dict):
        cfg.error(f"Expected a dictionary, got: {type(content).__name__}")
    known = {a.name for a in attrs.fields(cls)}
    for key in content:
        if key not in known:
            cfg[key].error(f"Unknown key '{key}', expected one of {sorted(known)}.")
    return content


def _bbox_validator(instance, attribute, value):
    if value is None:
        return
    if len(value) != 4:
        raise ValueError(f"bbox must be [lon_min, lat_min, lon_max, lat_max], got {value}")
    lon_min, lat_min, lon_max, lat_max = value
    if lon_min > lon_max or lat_min > lat_max:
        raise ValueError(f"bbox minimum greater than maximum: {value}")


def _range_validator(instance, attribute, value):
    if value is not None and len(value) != 2:
        raise ValueError(f"{attribute.name} must be [start, end], got {value}")


def _optional_tuple(value):
    if value is None:
        return None
    if isinstance(value, (str, bytes)):
        raise ValueError(f"Expected a list, got: {value!r}")
    return tuple(value)


@attrs.define
class SourceConfig:
    """
    Gridded source location and the subsetting parameters passed to the reader.
    Dimension names are detected from CF metadata when not given.
    """
    path: Optional[str] = None
    variable: Optional[str] = None
    lon: Optional[str] = None
    lat: Optional[str] = None
    time: Optional[str] = None
    depth_dim: Optional[str] = None
    depth: Optional[float] = None
    bbox: Optional[Tuple[float, float, float, float]] = attrs.field(
        default=None, converter=_optional_tuple, validator=_bbox_validator)
    time_range: Optional[Tuple[str, str]] = attrs.field(
        default=None, converter=_optional_tuple, validator=_range_validator)
    lon_wrap: bool = False
    fill_value: Optional[float] = None
    unit: Optional[str] = None
    crs: Optional[str] = None


@attrs.define
class ZoneConfig:
    path: Optional[str] = None
    name_column: Optional[str] = None
    layer: Optional[str] = None
    crs: Optional[str] = None


@attrs.define
class OutputConfig:
    dir: Optional[str] = "output"
    series: str = "series_{zone}.csv"
    grids: Optional[str] = "reduced.nc"


def _statistics(values) -> List[Statistic]:
    if isinstance(values, (str, Statistic)):
        values = [values]
    return [Statistic.parse(v) for v in values]


@attrs.define
class PipelineConfig:
    source: SourceConfig = attrs.field(factory=SourceConfig)
    zones: ZoneConfig = attrs.field(factory=ZoneConfig)
    statistics: List[Statistic] = attrs.field(factory=lambda: [Statistic.MEAN], converter=_statistics)
    reduce: List[Statistic] = attrs.field(factory=lambda: [Statistic.MEAN, Statistic.STDDEV], converter=_statistics)
    output: OutputConfig = attrs.field(factory=OutputConfig)
    options: Dict[str, Any] = attrs.field(factory=dict)
    file: Optional[str] = attrs.field(default=None, eq=False)

    @property
    def workdir(self) -> Path:
        """
        Data directory, relative paths are resolved against the directory
        of the configuration file (or the current directory).
        """
        workdir = Path(self.options.get('WORKDIR', "."))
        if not workdir.is_absolute() and self.file is not None:
            workdir = Path(self.file).parent / workdir
        return workdir

    @property
    def n_jobs(self) -> int:
        return int(self.options.get('N_JOBS', 1))

    @property
    def log_level(self) -> str:
        return str(self.options.get('LOG_LEVEL', 'INFO')).upper()

    def resolve(self, path: str | Path | None) -> str | Path | None:
        """
        Resolve a data path against the workdir. URLs (scheme://) are kept as they are.
        """
        if path is None:
            return None
        path_str = str(path)
        if re.match(r'^[a-zA-Z][a-zA-Z0-9+.-]*://', path_str):
            return path_str
        path = Path(path_str)
        if path.is_absolute():
            return path
        return self.workdir / path

    def store_options(self) -> Dict[str, Any]:
        """Options passed to fsspec for remote sources."""
        return {k: v for k, v in self.options.items() if k.startswith('S3_')}


def _build(content: ContextCfg, cls):
    values = _check_keys(content, cls)
    try:
        return cls(**values)
    except (TypeError, ValueError) as e:
        raise content.error(str(e)) from e


def _statistics_cfg(cfg: ContextCfg, default):
    if cfg.value() is None:
        return default
    try:
        return _statistics(cfg.value())
    except ValueError as e:
        raise cfg.error(str(e)) from e


def build_config(content: ContextCfg, overrides: Dict[str, Any] = None, **kwargs) -> PipelineConfig:
    """
    Create PipelineConfig from the deserialized YAML dictionary.
    """
    raw = content.value()
    if not isinstance(raw, dict):
        content.error(f"Expected a dictionary, got: {type(raw).__name__}")

    attrs_overrides = {}
    for key, value in (overrides or {}).items():
        if '.' in key:
            section, *path = key.split('.')
            nested = value
            for k in reversed(path):
                nested = {k: nested}
            recursive_update(raw, {section: nested})
        elif key in reserved_keys and key != 'ATTRS':
            raw[key] = value
        else:
            attrs_overrides[key] = value
    for key in raw:
        if key not in reserved_keys:
            content[key].error(f"Unknown section '{key}', expected one of {sorted(reserved_keys)}.")

    options = _layered_options(content.get('ATTRS', {}), attrs_overrides, **kwargs)
    defaults = PipelineConfig()
    return PipelineConfig(
        source=_build(content.get('SOURCE', {}), SourceConfig),
        zones=_build(content.get('ZONES', {}), ZoneConfig),
        statistics=_statistics_cfg(content.get('STATISTICS', None), defaults.statistics),
        reduce=_statistics_cfg(content.get('REDUCE', None), defaults.reduce),
        output=_build(content.get('OUTPUT', {}), OutputConfig),
        options=options,
        file=content.ctx.addr[0] if content.ctx.addr else None,
    )


def deserialize(source: Union[IO, str, bytes, Path],
                source_description=None, overrides: Dict[str, Any] = None, **kwargs) -> PipelineConfig:
    """
    Deserialize YAML configuration from a file path, stream, or bytes containing YAML content.

    Parameters:
      source:
        - If Path, it is treated as a file path (and must exist).
        - If str, it is YAML content.
        - If bytes, it is treated as YAML content (decoded as UTF-8).
        - Otherwise, it is assumed to be a file-like stream.
      source_description: used as the file name in error addresses for non-file sources.
      overrides: 'KEY' -> value for ATTRS options, 'SECTION.key' -> value for other sections,
                 'SECTION' -> value replaces a whole section (e.g. STATISTICS).
      kwargs: default options.
    """
    file_name = source_description
    if isinstance(source, Path):
        file_name = str(source)
        try:
            with Path(source).open("r", encoding="utf-8") as file:
                content = file.read()
        except OSError as e:
            raise ConfigError(f"Can not read configuration: {e}", PipelineCtx("config", [file_name])) from e
    elif isinstance(source, str):
        content = source
    elif isinstance(source, bytes):
        content = source.decode("utf-8")
    else:
        try:
            content = source.read()
        except Exception as e:
            raise TypeError("Provided source is not a supported type (IO, str, bytes, or Path)") from e

    root_ctx = PipelineCtx("config", [file_name] if file_name else [])
    try:
        raw_dict = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}", root_ctx) from e
    root = ContextCfg(raw_dict, root_ctx)
    return build_config(root, overrides, **kwargs)


def parse_override(value: str) -> Any:
    """Interpret a command line value as a YAML scalar or list."""
    try:
        return yaml.safe_load(value)
    except yaml.YAMLError:
        return value
