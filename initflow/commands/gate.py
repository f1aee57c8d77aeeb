"""
initflow gate - Evaluate a gate's criteria for an initiative.
"""

from rich.markup import escape

from initflow.lib.config import FlowConfig
from initflow.lib.output import console, emit_json
from initflow.workflow.gates import check_gate
from initflow.workflow.schema import Schema


def cmd_gate(args, config: FlowConfig, schema: Schema) -> int:
    """Check a gate. Exit 1 when it does not pass."""
    result = check_gate(args.id, args.gate, schema, config.initiatives_dir)

    if args.json:
        emit_json(result.to_dict())
        return 0 if result.passed else 1

    verdict = "[green]PASSED[/green]" if result.passed else "[red]NOT PASSED[/red]"
    console.print(f"Gate [bold]{escape(result.gate)}[/bold]: {verdict} ({result.criteria_met}/{result.criteria_total} criteria met)")
    console.print()

    for c in result.criteria:
        marker = "[green][x][/green]" if c.passed else "[red][ ][/red]"
        console.print(f"  {marker} {escape(c.criterion)}")
        if c.reason:
            console.print(f"        {c.reason}", markup=False, style="dim")

    return 0 if result.passed else 1
