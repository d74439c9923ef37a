"""
Error taxonomy of the pipeline and the context object that binds every
error to the pipeline step and the input it was raised for, in order to
provide consistent and informed error messages.
"""

from typing import *
import logging
import attrs


class RaisingLogger(logging.LoggerAdapter):
    """
    Logs the error and raises it. A plain message is raised as RuntimeError.
    """
    def __init__(self, name: str):
        super().__init__(logging.getLogger(name), {})

    def error(self, exc, *args, **kwargs):
        super().error(str(exc), *args, **kwargs)
        if not isinstance(exc, BaseException):
            exc = RuntimeError(str(exc))
        raise exc


def default_logger():
    return RaisingLogger("grid_zones")


class ErrBase:
    """
    Mixin that holds message and its origin context for both
    the Exception and the Warning classes.
    """
    def __init__(self, message: str, ctx: 'PipelineCtx'):
        super().__init__(message)
        self.message = message
        self.address = ctx

    def __str__(self) -> str:
        return f"{self.message}  (at {self.address})"


class GridZonesError(ErrBase, Exception):
    """Base of all fatal pipeline errors."""
    pass


class FormatError(GridZonesError, ValueError):
    """Gridded or vector source is unreadable or structurally inconsistent."""
    pass


class EmptyStackError(GridZonesError, ValueError):
    """Operation requiring at least one time slice got none."""
    pass


class NoPolygonsError(GridZonesError, ValueError):
    """Zonal sampling requested without any zone."""
    pass


class ConfigError(GridZonesError, ValueError):
    """Invalid or missing configuration option."""
    pass


class SourceIOError(GridZonesError, OSError):
    """File system or network failure while loading a source."""
    pass


class PipelineWarning(ErrBase, UserWarning):
    """Emit when the problem should be non-fatal."""
    pass


Address = Union[str, int]


@attrs.define(frozen=True)
class PipelineCtx:
    """
    Location of a problem: the pipeline step and a path of components
    addressing the input (file name, variable, zone, config key, ...).

    Path components are stored as provided (str or int) and converted to
    strings only when rendering.
    """
    step: str
    addr: List[Address] = attrs.field(factory=list)
    logger: logging.LoggerAdapter = attrs.field(factory=default_logger, eq=False, repr=False)

    @property
    def path(self) -> str:
        return '/'.join(map(str, self.addr))

    def __str__(self) -> str:
        path = self.path if self.addr else "<INPUT>"
        return f"{self.step}:{path}"

    def dive(self, *path) -> "PipelineCtx":
        """Return a new context with extra address components."""
        return PipelineCtx(self.step, list(self.addr) + list(path), self.logger)

    def at_step(self, step: str) -> "PipelineCtx":
        return PipelineCtx(step, list(self.addr), self.logger)

    def error(self, message: str, err_cls: Type[GridZonesError] = FormatError, **kwargs) -> GridZonesError:
        """
        Log the error through the context logger. The default logger raises,
        a non-raising logger makes the caller responsible for `raise`.
        """
        err = err_cls(message, self)
        self.logger.error(err, **kwargs)
        return err

    def warning(self, message: str, **kwargs) -> PipelineWarning:
        warn = PipelineWarning(message, self)
        self.logger.warning(warn, **kwargs)
        return warn
