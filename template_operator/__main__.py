#!/usr/bin/env python
"""
The main module provides the executable entrypoint for the operator
"""

# Standard
from typing import Dict, List, Tuple
import argparse

# First Party
import aconfig
import alog

# Local
from . import config
from .cmd import CmdBase, RenderCmd, RunOperatorCmd
from .config import library_config
from .exceptions import assert_config
from .log_format import OperatorJsonFormatter

## Constants ###################################################################

log = alog.use_channel("MAIN")

## Helpers #####################################################################


def add_library_config_args(parser, config_obj=None, path=None) -> Dict[str, List[str]]:
    """Add one --flag per leaf of the library config. Nested keys use dotted
    flag names, e.g. --rate_limiter.burst.

    Returns:
        setters:  Dict[str, List[str]]
            Map from argparse dest to the config path it overrides
    """
    path = path or []
    setters = {}
    config_obj = library_config if config_obj is None else config_obj
    for key, val in config_obj.items():
        sub_path = path + [key]

        # Recurse into nested sections
        if isinstance(val, aconfig.AttributeAccessDict):
            setters.update(add_library_config_args(parser, val, sub_path))
            continue

        arg_name = ".".join(sub_path)
        dest_name = "_".join(sub_path)
        kwargs = {
            "default": val,
            "dest": dest_name,
            "help": f"Library config override for {arg_name}",
        }
        if isinstance(val, bool):
            kwargs["action"] = argparse.BooleanOptionalAction
        elif isinstance(val, list):
            kwargs["nargs"] = "*"
        elif val is not None:
            kwargs["type"] = type(val)

        if (
            f"--{arg_name}"
            not in parser._option_string_actions  # pylint: disable=protected-access
        ):
            parser.add_argument(f"--{arg_name}", **kwargs)
            setters[dest_name] = sub_path
    return setters


def update_library_config(args, setters):
    """Update the library config values based on the parsed arguments"""
    for dest_name, config_path in setters.items():
        config_obj = library_config
        for part in config_path[:-1]:
            config_obj = config_obj[part]
        config_obj[config_path[-1]] = getattr(args, dest_name)


def add_command(
    subparsers: argparse._SubParsersAction,
    cmd: CmdBase,
) -> Tuple[argparse.ArgumentParser, Dict[str, List[str]]]:
    """Add the subparser and set up the default function call"""
    parser = cmd.add_subparser(subparsers)
    parser.set_defaults(func=cmd.cmd)
    library_args = parser.add_argument_group("Library Configuration")
    library_config_setters = add_library_config_args(library_args)
    return parser, library_config_setters


## Main ########################################################################


def main(argv=None):
    """Parse the command line, apply config overrides, and run the command.
    With no command given, the operator runs.
    """
    parser = argparse.ArgumentParser(description=__doc__)
    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    run_parser, run_setters = add_command(subparsers, RunOperatorCmd())
    _, render_setters = add_command(subparsers, RenderCmd())

    # Use a preliminary parser to check for the presence of a command and fall
    # back to the default command if not found
    check_parser = argparse.ArgumentParser(add_help=False)
    check_parser.add_argument("command", nargs="?")
    check_args, _ = check_parser.parse_known_args(argv)
    if check_args.command not in subparsers.choices:
        args = run_parser.parse_args(argv)
        setters = run_setters
    else:
        args = parser.parse_args(argv)
        setters = render_setters if args.command == "render" else run_setters

    # Provide overrides to the library configs and re-check them
    update_library_config(args, setters)
    invalid_params = config.validate()
    assert_config(
        not invalid_params, f"Library configuration found invalid values: {invalid_params}"
    )

    # Reconfigure logging
    alog.configure(
        default_level=config.log_level,
        filters=config.log_filters,
        formatter=OperatorJsonFormatter() if config.log_json else "pretty",
        thread_id=config.log_thread_id,
    )

    # Run the command's function
    args.func(args)


if __name__ == "__main__":  # pragma: no cover
    main()
