import re
import datetime
import zoneinfo

import numpy as np
import dateutil.parser
import dateutil.tz
import attrs

import pint as _pint
ureg = _pint.UnitRegistry()

# CF conventions spell some units differently from pint.
ureg.define('degrees_north = degree')
ureg.define('degrees_east = degree')
ureg.define('psu = []')
_pint.set_application_registry(ureg)


# Daylight saving time intentionally forbidden to avoid duplicit times during transition.
def build_tzinfos():
    """
    Return dict mapping common timezone abbreviations to tzinfo objects.
    Abbreviations with inconsistent offsets across zones are dropped.
    """
    tzinfos = {}
    winter_instance = datetime.datetime(2000, 1, 1, tzinfo=datetime.timezone.utc)
    summer_instance = datetime.datetime(2000, 7, 1, tzinfo=datetime.timezone.utc)
    inconsistent = set()
    for zone in zoneinfo.available_timezones():
        tzobj = zoneinfo.ZoneInfo(zone)
        for instance in [winter_instance, summer_instance]:
            abbr = instance.astimezone(tzobj).tzname()
            if not abbr or len(abbr) > 5 or not abbr.isalpha():
                continue
            if abbr in tzinfos:
                existing = tzinfos[abbr].utcoffset(instance)
                new = tzobj.utcoffset(instance)
                if existing != new:
                    inconsistent.add(abbr)
            tzinfos[abbr] = tzobj
    for code in inconsistent:
        tzinfos.pop(code)
    return tzinfos

TZINFOS = build_tzinfos()


class Unit(ureg.Unit):
    pass


class Quantity(ureg.Quantity):

    @property
    def unit(self):
        # pint.Quantity.units has unlogical name.
        return self.units


def parse_unit(unit: str | None) -> Unit:
    """
    Pint unit for a unit string; None and '' (and CF '1') are dimensionless.
    Raises ValueError for unknown units.
    """
    if unit is None or unit.strip() in ('', '1'):
        return Unit('')
    try:
        return Unit(unit.strip())
    except Exception as e:
        raise ValueError(f"Invalid unit string: {unit}. Pint error: {e}") from e


def convert(values: np.ndarray, from_unit: str | None, to_unit: str | None) -> np.ndarray:
    """
    Convert magnitudes `values` from `from_unit` to `to_unit`.
    NaN values stay NaN. Raises ValueError for unknown or incompatible units.
    """
    src, dst = parse_unit(from_unit), parse_unit(to_unit)
    if src == dst:
        return values
    q = ureg.Quantity(np.asarray(values, dtype=float), src)
    try:
        return q.to(dst).magnitude
    except _pint.errors.DimensionalityError as e:
        raise ValueError(f"Can not convert '{from_unit}' to '{to_unit}': {e}") from e


@attrs.define
class DateTimeUnit:
    """
    Configuration for datetime parsing.
    Naive datetimes (numpy datetime64) are always UTC; `tz` is the zone
    assumed for input strings without an explicit zone.
    """
    tick: str = 'ns'
    tz: str | None = None
    dayfirst: bool = False
    yearfirst: bool = True

    @property
    def tzinfo(self) -> datetime.tzinfo:
        """
        Convert the stored zone name / offset string into a tzinfo instance.
        Accepts None, '+HH:MM' or '-HH:MM', or named zones.
        """
        val = self.tz
        if val is None:
            return datetime.timezone.utc

        # offset form ±HH:MM
        m = re.match(r'([+-])(\d{2}):(\d{2})$', val)
        if m:
            sign = 1 if m.group(1) == '+' else -1
            hours, mins = int(m.group(2)), int(m.group(3))
            offset = datetime.timedelta(hours=hours, minutes=mins) * sign
            return datetime.timezone(offset)

        # named zone
        tzinfo = dateutil.tz.gettz(val)
        if tzinfo is None:
            raise ValueError(f"Unknown timezone spec '{val}'")
        return tzinfo

    def nat(self):
        return np.datetime64('NaT', self.tick)

    def parse(self, value) -> np.datetime64:
        """
        Parse a date time string (or datetime / datetime64) into UTC datetime64[tick].
        Raises ValueError for unparsable strings.
        """
        if isinstance(value, np.datetime64):
            return value.astype(f'datetime64[{self.tick}]')
        if isinstance(value, datetime.datetime):
            dt = value
        else:
            v = str(value)
            if v == 'NaT':
                return self.nat()
            try:
                dt = dateutil.parser.parse(v,
                                           dayfirst=self.dayfirst,
                                           yearfirst=self.yearfirst,
                                           tzinfos=TZINFOS)
            except (ValueError, OverflowError) as e:
                raise ValueError(f"Failed to parse datetime value: {v}") from e
        # If no explicit tz, assign configured tz (or UTC if none)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=self.tzinfo)
        dt_utc = dt.astimezone(datetime.timezone.utc).replace(tzinfo=None)
        return np.datetime64(dt_utc, self.tick)
