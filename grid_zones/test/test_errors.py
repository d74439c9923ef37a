import logging

import pytest

from grid_zones import errors as gz_err


def test_error_message():
    ctx = gz_err.PipelineCtx("open", ["sst.nc", "sst"])
    with pytest.raises(gz_err.FormatError) as ei:
        ctx.error("boom")
    s = str(ei.value)
    assert "boom" in s
    assert "(at open:sst.nc/sst)" in s
    assert ei.value.message == "boom"
    assert ei.value.address is ctx


def test_hierarchy():
    for cls in [gz_err.FormatError, gz_err.EmptyStackError, gz_err.NoPolygonsError, gz_err.ConfigError]:
        assert issubclass(cls, gz_err.GridZonesError)
        assert issubclass(cls, ValueError)
    assert issubclass(gz_err.SourceIOError, gz_err.GridZonesError)
    assert issubclass(gz_err.SourceIOError, OSError)
    assert issubclass(gz_err.PipelineWarning, UserWarning)


def test_error_class():
    ctx = gz_err.PipelineCtx("sample")
    with pytest.raises(gz_err.NoPolygonsError):
        ctx.error("no zones", gz_err.NoPolygonsError)


def test_ctx_address():
    ctx = gz_err.PipelineCtx("config", ["cfg.yaml"])
    sub = ctx.dive("SOURCE", 0)
    assert sub.path == "cfg.yaml/SOURCE/0"
    assert str(sub) == "config:cfg.yaml/SOURCE/0"
    assert ctx.addr == ["cfg.yaml"]
    assert str(gz_err.PipelineCtx("open")) == "open:<INPUT>"
    assert str(sub.at_step("open")) == "open:cfg.yaml/SOURCE/0"


def test_warning_logged(caplog):
    ctx = gz_err.PipelineCtx("sample", ["zone_a"])
    with caplog.at_level(logging.WARNING, logger="grid_zones"):
        warn = ctx.warning("heads up")
    assert isinstance(warn, gz_err.PipelineWarning)
    assert "heads up" in caplog.text
    assert "sample:zone_a" in caplog.text


def test_non_raising_logger():
    logger = logging.LoggerAdapter(logging.getLogger("test_non_raising"), {})
    ctx = gz_err.PipelineCtx("open", ["x.nc"], logger)
    err = ctx.error("collected")
    assert isinstance(err, gz_err.FormatError)
    assert ctx.dive("a").logger is logger
