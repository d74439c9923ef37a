# gz/cli.py
from typing import *
import sys
import argparse
from pathlib import Path

import grid_zones
from grid_zones.config import deserialize, parse_override
from grid_zones.errors import GridZonesError
from grid_zones.logger import setup_logging


def peeloff_dot_args(argv: List[str], prefix: str) -> Tuple[Dict[str, Any], List[str]]:
    """
    Peel off `argv` items in form
        <prefix>.<KEY>=<VALUE>

    Return:
    kwargs : dict
        Mapping KEY -> VALUE, values interpreted as YAML scalars or lists.
    remaining : list[str]
        The argv list without the peeled-off options.

    Example:
        prefix="--cfg"
        argument: "--cfg.SOURCE.variable=sst"
    """
    kwargs = {}
    remaining = []
    prefix = f"{prefix}."
    plen = len(prefix)
    for arg in argv:
        if arg.startswith(prefix):
            key_val = arg[plen:]
            kv_pair = key_val.split("=", 1)
            try:
                key, value = kv_pair
            except ValueError:
                raise SystemExit(
                    f"Invalid option '{arg}'. Expected format {prefix}<KEY>=<VALUE>."
                )
            kwargs[key] = parse_override(value)
        else:
            remaining.append(arg)

    return kwargs, remaining


def cmd_run(args, overrides: dict) -> int:
    config = deserialize(Path(args.config), overrides=overrides)
    setup_logging(config.log_level)
    result = grid_zones.run(config)
    for path in result.outputs:
        print(path)
    return 0


def _format_info(info: Dict[str, Any]) -> str:
    return "\n".join(f"{key:>18}: {value}" for key, value in info.items())


def cmd_info(args, overrides: dict) -> int:
    config = deserialize("", source_description="<command line>", overrides=overrides)
    stack = grid_zones.open_stack(args.path, config=config)
    print(_format_info(stack.describe()))
    return 0


def arg_parser():
    parser = argparse.ArgumentParser(prog="gz", description="Zonal statistics of gridded datasets")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run",
        help="Run the whole pipeline configured by a YAML file and write the outputs."
    )
    run_parser.add_argument("config", help="Path to the pipeline configuration YAML file")

    info_parser = subparsers.add_parser(
        "info",
        help="Print summary of a gridded source: variable, shape, time range, extent, CRS."
    )
    info_parser.add_argument("path", help="Path or URL of the gridded file")
    parser.epilog = "Configuration options are overwritten by --cfg.KEY=VALUE or --cfg.SECTION.key=VALUE."
    return parser


def main(argv=None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    overrides, remaining = peeloff_dot_args(argv, '--cfg')

    parser = arg_parser()
    args = parser.parse_args(remaining)

    commands = {'run': cmd_run, 'info': cmd_info}
    try:
        return commands[args.command](args, overrides)
    except GridZonesError as e:
        print(f"gz {args.command}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
