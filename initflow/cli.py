#!/usr/bin/env python3
"""initiative-flow CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path

from initflow.lib.config import load_flow_config, get_openspec_dir
from initflow.lib.locking import LockTimeout
from initflow.lib.output import report_error
from initflow.lib.validate import ValidationError
from initflow.workflow.schema import load_schema
from initflow.commands import status as cmd_status_module
from initflow.commands import gate as cmd_gate_module
from initflow.commands import transition as cmd_transition_module
from initflow.commands import workitems as cmd_workitems_module

EXIT_FAILED = 1
EXIT_NOT_FOUND = 2


def get_flow_context(args):
    """Load project config and the workflow schema it names."""
    openspec_dir = Path(args.openspec_dir) if args.openspec_dir else get_openspec_dir()
    config = load_flow_config(openspec_dir)
    schema = load_schema(config.schema, config.schemas_dir)
    return config, schema


def run(handler, args) -> int:
    """Run a command handler, mapping errors to exit codes."""
    try:
        config, schema = get_flow_context(args)
        return handler(args, config, schema)
    except FileNotFoundError as e:
        report_error(args, str(e))
        return EXIT_NOT_FOUND
    except (ValidationError, ValueError) as e:
        report_error(args, str(e))
        return EXIT_NOT_FOUND
    except LockTimeout as e:
        report_error(args, str(e))
        return EXIT_FAILED


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='initflow', description='Initiative flow: tiers, gates and work items')
    parser.add_argument('--json', action='store_true', help='Emit machine-readable JSON')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    parser.add_argument('--openspec-dir', help='openspec directory (default: $INITFLOW_OPENSPEC_DIR or ./openspec)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # initflow new
    p_new = subparsers.add_parser('new', help='Create an initiative in the draft stage')
    p_new.add_argument('id', help='Initiative ID')
    p_new.add_argument('title', help='Initiative title')
    p_new.add_argument('--mode', choices=['strict', 'auto'], default='strict', help='Gate mode')
    p_new.set_defaults(func=cmd_status_module.cmd_new)

    # initflow status
    p_status = subparsers.add_parser('status', help='Show initiative status')
    p_status.add_argument('id', help='Initiative ID')
    p_status.set_defaults(func=cmd_status_module.cmd_status)

    # initflow tier
    p_tier = subparsers.add_parser('tier', help='Show status of one tier')
    p_tier.add_argument('id', help='Initiative ID')
    p_tier.add_argument('tier', help='Tier ID (tier1..tier4)')
    p_tier.set_defaults(func=cmd_status_module.cmd_tier)

    # initflow gate
    p_gate = subparsers.add_parser('gate', help='Check gate criteria')
    p_gate.add_argument('id', help='Initiative ID')
    p_gate.add_argument('gate', help='Gate ID (strategic, product, design, implementation)')
    p_gate.set_defaults(func=cmd_gate_module.cmd_gate)

    # initflow stage
    p_stage = subparsers.add_parser('stage', help='Show current stage and valid transitions')
    p_stage.add_argument('id', help='Initiative ID')
    p_stage.set_defaults(func=cmd_status_module.cmd_stage)

    # initflow next
    p_next = subparsers.add_parser('next', help='Show the next artifact to create')
    p_next.add_argument('id', help='Initiative ID')
    p_next.set_defaults(func=cmd_status_module.cmd_next)

    # initflow transition
    p_transition = subparsers.add_parser('transition', help='Move an initiative to a new stage')
    p_transition.add_argument('id', help='Initiative ID')
    p_transition.add_argument('from_stage', metavar='from', help='Expected current stage')
    p_transition.add_argument('to_stage', metavar='to', help='Target stage')
    p_transition.set_defaults(func=cmd_transition_module.cmd_transition)

    # initflow workitems
    p_workitems = subparsers.add_parser('workitems', help='Generate and validate work items')
    workitems_sub = p_workitems.add_subparsers(dest='workitems_cmd', required=True)

    # initflow workitems init
    p_wi_init = workitems_sub.add_parser('init', help='Enable work items and generate them')
    p_wi_init.add_argument('id', help='Initiative ID')
    p_wi_init.add_argument('--auto', action='store_true', help='Regenerate automatically after transitions')
    p_wi_init.set_defaults(func=cmd_workitems_module.cmd_workitems_init)

    # initflow workitems generate
    p_wi_generate = workitems_sub.add_parser('generate', help='Rebuild workitems/ from tier artifacts')
    p_wi_generate.add_argument('id', help='Initiative ID')
    p_wi_generate.set_defaults(func=cmd_workitems_module.cmd_workitems_generate)

    # initflow workitems validate
    p_wi_validate = workitems_sub.add_parser('validate', help='Validate the work item tree')
    p_wi_validate.add_argument('id', help='Initiative ID')
    p_wi_validate.set_defaults(func=cmd_workitems_module.cmd_workitems_validate)

    # initflow workitems tree
    p_wi_tree = workitems_sub.add_parser('tree', help='Print the work item tree')
    p_wi_tree.add_argument('id', help='Initiative ID')
    p_wi_tree.set_defaults(func=cmd_workitems_module.cmd_workitems_tree)

    # initflow workitems watch
    p_wi_watch = workitems_sub.add_parser('watch', help='Regenerate work items when sources change')
    p_wi_watch.add_argument('id', help='Initiative ID')
    p_wi_watch.add_argument('--interval', type=float, default=1.0, help='Poll interval in seconds')
    p_wi_watch.add_argument('--debounce', type=float, default=0.5, help='Debounce delay in seconds')
    p_wi_watch.set_defaults(func=cmd_workitems_module.cmd_workitems_watch)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    return run(args.func, args)


if __name__ == '__main__':
    sys.exit(main())
