"""
initflow new / status / tier / stage / next - Initiative status queries.
"""

from rich.markup import escape
from rich.table import Table

from initflow.lib.config import FlowConfig
from initflow.lib.output import STATUS_SYMBOLS, console, emit_json, report_error, styled
from initflow.workflow.initiative import create_initiative
from initflow.workflow.schema import Schema
from initflow.workflow.state_machine import (
    get_current_stage,
    get_escalation_target,
    get_next_stage,
    get_valid_transitions,
    is_terminal_stage,
)
from initflow.workflow.status import (
    find_next_action,
    get_all_artifact_statuses,
    get_initiative_status,
    get_tier_status,
)


def cmd_new(args, config: FlowConfig, schema: Schema) -> int:
    """Create an initiative in the draft stage."""
    try:
        state = create_initiative(args.id, args.title, config.initiatives_dir, mode=args.mode)
    except FileExistsError as e:
        report_error(args, str(e))
        return 1

    if args.json:
        emit_json(state.to_dict())
    else:
        console.print(f"Created initiative [bold]{escape(args.id)}[/bold] ({state.stage})")
        console.print(f"  {config.initiatives_dir / args.id}", markup=False)
    return 0


def _artifact_table(artifacts) -> Table:
    table = Table(show_header=True, header_style="bold", box=None)
    table.add_column("")
    table.add_column("Artifact")
    table.add_column("Tier")
    table.add_column("Status")
    table.add_column("Details", overflow="fold")

    for a in artifacts:
        if a.status == "done":
            details = ", ".join(a.paths) if len(a.paths) > 1 else (a.path or "")
        elif a.missing_deps:
            details = f"needs {', '.join(a.missing_deps)}"
        else:
            details = a.description
        table.add_row(STATUS_SYMBOLS.get(a.status, ""), a.id, a.tier, styled(a.status), details)
    return table


def cmd_status(args, config: FlowConfig, schema: Schema) -> int:
    """Show full status of an initiative."""
    status = get_initiative_status(args.id, schema, config.initiatives_dir)

    if args.json:
        emit_json(status.to_dict())
        return 0

    console.print(f"[bold]Initiative: {escape(status.initiative)}[/bold]")
    console.print("=" * 60)
    console.print()
    console.print(f"Title:           {escape(status.title)}")
    console.print(f"Stage:           {status.current_stage}")
    console.print(f"Current tier:    {status.current_tier or '-'}")
    console.print(f"Completed tiers: {', '.join(status.completed_tiers) or 'none'}")
    console.print()
    console.print(_artifact_table(status.artifacts))
    console.print()

    console.print("[bold]Gates[/bold]")
    for gate in status.gates:
        passed_at = f" ({gate['passed_at']})" if gate.get("passed_at") else ""
        console.print(f"  {gate['id']:<16} {styled(gate['status'])}{passed_at}")

    open_escalations = [e for e in status.escalations if e.is_open]
    if open_escalations:
        console.print()
        console.print(f"[bold red]Open escalations: {len(open_escalations)}[/bold red]")
        for e in open_escalations:
            console.print(f"  {e.id} [{e.severity}] {e.from_tier} -> {e.to_tier}: {e.reason}", markup=False)

    if status.blockers:
        console.print()
        console.print("[bold]Blockers[/bold]")
        for blocker in status.blockers:
            console.print(f"  - {blocker}", markup=False)

    console.print()
    if status.is_complete:
        console.print("[green]Initiative complete[/green]")
    elif status.next_action:
        na = status.next_action
        console.print(f"Next: {escape(na.description)} -> {escape(na.generates)}")
    return 0


def cmd_tier(args, config: FlowConfig, schema: Schema) -> int:
    """Show status of one tier."""
    tier = get_tier_status(args.id, args.tier, schema, config.initiatives_dir)

    if args.json:
        emit_json(tier.to_dict())
        return 0

    console.print(f"[bold]{tier.tier}: {escape(tier.name)}[/bold] ({escape(tier.council)})")
    console.print(f"Completion: {tier.completion_pct:.0f}%")
    if tier.is_blocked:
        console.print(f"Blocked by: {', '.join(tier.blocked_by)}")
    console.print()
    console.print(_artifact_table(tier.artifacts))
    return 0


def cmd_stage(args, config: FlowConfig, schema: Schema) -> int:
    """Show the current stage and where it can go."""
    stage = get_current_stage(args.id, config.initiatives_dir)
    data = {
        "initiative": args.id,
        "stage": stage,
        "valid_transitions": get_valid_transitions(stage),
        "next_stage": get_next_stage(stage),
        "escalation_target": get_escalation_target(stage),
        "is_terminal": is_terminal_stage(stage),
    }

    if args.json:
        emit_json(data)
        return 0

    console.print(f"Stage: [bold]{stage}[/bold]")
    if data["is_terminal"]:
        console.print("Terminal stage, no further transitions")
        return 0
    console.print(f"Valid transitions: {', '.join(data['valid_transitions'])}")
    if data["next_stage"]:
        console.print(f"Next on happy path: {data['next_stage']}")
    if data["escalation_target"]:
        console.print(f"Escalates to: {data['escalation_target']}")
    return 0


def cmd_next(args, config: FlowConfig, schema: Schema) -> int:
    """Show the next artifact to create."""
    stage = get_current_stage(args.id, config.initiatives_dir)
    next_action = None
    if stage != "completed":
        artifacts = get_all_artifact_statuses(args.id, schema, config.initiatives_dir)
        next_action = find_next_action(artifacts, schema)

    if args.json:
        emit_json({"next_action": next_action.to_dict() if next_action else None})
        return 0

    if next_action is None:
        console.print("Nothing ready. All artifacts are done or blocked.")
        return 0

    console.print(f"Next: [bold]{escape(next_action.artifact)}[/bold] ({next_action.tier})")
    console.print(f"  {next_action.description}", markup=False)
    console.print(f"  Generates: {next_action.generates}", markup=False)
    return 0
