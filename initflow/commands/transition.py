"""
initflow transition - Move an initiative to a new stage.
"""

from rich.markup import escape

from initflow.lib.config import FlowConfig
from initflow.lib.output import console, emit_json
from initflow.workflow.schema import Schema
from initflow.workflow.state_machine import apply_transition
from initflow.workitems.watch import trigger_auto_generate


def cmd_transition(args, config: FlowConfig, schema: Schema) -> int:
    """Apply a transition, enforcing its gate. Exit 1 when refused."""
    result = apply_transition(args.id, args.from_stage, args.to_stage, schema, config.initiatives_dir)

    if result.success:
        # Keep work items in sync when the initiative opted in
        trigger_auto_generate(args.id, config.openspec_dir, config.initiatives_dir)

    if args.json:
        emit_json(result.to_dict())
        return 0 if result.success else 1

    if result.success:
        console.print(f"{escape(args.id)}: {result.previous_stage} -> [bold]{result.new_stage}[/bold]")
        return 0

    console.print(f"[red]Transition refused:[/red] {escape(result.error)}", highlight=False)
    return 1
