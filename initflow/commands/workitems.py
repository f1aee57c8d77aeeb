"""
initflow workitems - Generate, validate and inspect the work item tree.

Subcommands:
  init      enable work items for an initiative and generate them
  generate  rebuild workitems/ from tier artifacts
  validate  check structural invariants of workitems/
  tree      print the manifest tree
  watch     regenerate whenever epics, stories or tasks change
"""

import time

from rich.markup import escape
from rich.tree import Tree

from initflow.lib.config import FlowConfig, WorkItemsConfig, set_workitems_config
from initflow.lib.documents import now_iso, read_yaml
from initflow.lib.output import console, emit_json, report_error, styled
from initflow.workflow.initiative import get_initiative_path
from initflow.workflow.schema import Schema
from initflow.workitems.generate import MANIFEST_FILENAME, WORKITEMS_DIR, GenerationResult, generate_work_items
from initflow.workitems.validate import validate_work_items
from initflow.workitems.watch import WorkItemsWatcher


def _print_generation(result: GenerationResult) -> None:
    if result.success:
        console.print(
            f"[green]Generated[/green] {result.epics} epics, {result.stories} stories, "
            f"{result.tasks} tasks -> {escape(str(result.path))}"
        )
    else:
        console.print(f"[red]Generation failed:[/red] {escape(', '.join(result.errors))}", highlight=False)


def cmd_workitems_init(args, config: FlowConfig, schema: Schema) -> int:
    """Enable work items in config.yaml, then generate."""
    settings = WorkItemsConfig(enabled=True, auto_generate=args.auto, initialized_at=now_iso())
    set_workitems_config(config.openspec_dir, args.id, settings)

    result = generate_work_items(args.id, config.initiatives_dir)
    if args.json:
        emit_json({"config": {"enabled": True, "auto_generate": args.auto}, **result.to_dict()})
    else:
        mode = "with auto-generation" if args.auto else "manual generation"
        console.print(f"Work items enabled for [bold]{escape(args.id)}[/bold] ({mode})")
        _print_generation(result)
    return 0 if result.success else 1


def cmd_workitems_generate(args, config: FlowConfig, schema: Schema) -> int:
    result = generate_work_items(args.id, config.initiatives_dir)
    if args.json:
        emit_json(result.to_dict())
    else:
        _print_generation(result)
    return 0 if result.success else 1


def cmd_workitems_validate(args, config: FlowConfig, schema: Schema) -> int:
    result = validate_work_items(args.id, config.initiatives_dir)
    if args.json:
        emit_json(result.to_dict())
        return 0 if result.valid else 1

    if result.valid:
        console.print(f"[green]Valid[/green] ({result.items_checked} items checked)")
    else:
        console.print(f"[red]Invalid[/red]: {len(result.errors)} error(s)")
        for e in result.errors:
            console.print(f"  {e.path}: {e.rule} - {e.message}", markup=False)
    for w in result.warnings:
        console.print(f"  [yellow]warning[/yellow] {escape(w.message)}")
    return 0 if result.valid else 1


def _add_nodes(branch: Tree, nodes: list) -> None:
    for node in nodes or []:
        if not isinstance(node, dict):
            continue
        label = f"{escape(str(node.get('id')))} [dim]({node.get('level')}, {node.get('priority')})[/dim] {styled(str(node.get('status')))}"
        _add_nodes(branch.add(label), node.get("children"))


def cmd_workitems_tree(args, config: FlowConfig, schema: Schema) -> int:
    """Print the work item tree from manifest.yaml."""
    manifest_path = get_initiative_path(args.id, config.initiatives_dir) / WORKITEMS_DIR / MANIFEST_FILENAME
    if not manifest_path.exists():
        report_error(args, f"No work items for '{args.id}'. Run: initflow workitems generate {args.id}")
        return 2

    manifest = read_yaml(manifest_path)
    if args.json:
        emit_json(manifest.get("tree") or [])
        return 0

    project = manifest.get("project") or {}
    tree = Tree(f"[bold]{escape(str(project.get('title') or args.id))}[/bold]")
    _add_nodes(tree, manifest.get("tree"))
    console.print(tree)

    summary = manifest.get("summary") or {}
    if summary:
        by_level = summary.get("by_level") or {}
        console.print(
            f"{summary.get('total_items', 0)} items: {by_level.get('epic', 0)} epics, "
            f"{by_level.get('story', 0)} stories, {by_level.get('task', 0)} tasks"
        )
    return 0


def cmd_workitems_watch(args, config: FlowConfig, schema: Schema) -> int:
    """Regenerate on source changes until interrupted."""
    watcher = WorkItemsWatcher(
        args.id,
        config.initiatives_dir,
        debounce=args.debounce,
        poll_interval=args.interval,
        on_generated=_print_generation,
    )
    console.print(f"Watching [bold]{escape(args.id)}[/bold] for epic/story/task changes (Ctrl+C to stop)")
    watcher.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopped")
    finally:
        watcher.stop()
    return 0
