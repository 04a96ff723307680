"""
Workflow Studio - Main Entry Point

Command line tools for workflow files:
    workflow-studio inspect workflow.json
    workflow-studio thumbnail workflow.json -o preview.png
    workflow-studio list
"""

import argparse
import logging
import sys
from collections import Counter
from pathlib import Path


logger = logging.getLogger(__name__)


def _read_document(path: Path):
    from workflow_studio.core.workflow_io import import_workflow_json

    return import_workflow_json(path.read_text(encoding="utf-8"))


def cmd_inspect(args: argparse.Namespace) -> int:
    """Validate an exported workflow and print a summary."""
    from workflow_studio.core.workflow_io import ImportValidationError, extract_media_urls

    try:
        document = _read_document(args.file)
    except OSError as e:
        print(f"Error: cannot read {args.file}: {e}", file=sys.stderr)
        return 1
    except ImportValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    groups = [node for node in document.nodes if node.is_group]
    types = Counter(node.type_tag for node in document.nodes)

    print(f"Workflow: {document.name}")
    if document.id:
        print(f"ID: {document.id}")
    if document.exported_at:
        print(f"Exported: {document.exported_at}")
    print(f"Nodes: {len(document.nodes)} ({len(groups)} group(s))")
    for type_tag, count in sorted(types.items()):
        print(f"  {type_tag}: {count}")
    print(f"Edges: {len(document.edges)}")
    print(f"Media files: {len(extract_media_urls(document.nodes))}")
    return 0


def cmd_thumbnail(args: argparse.Namespace) -> int:
    """Render a PNG preview of an exported workflow."""
    from workflow_studio.core.workflow_io import ImportValidationError
    from workflow_studio.providers.thumbnail import GraphThumbnailer

    try:
        document = _read_document(args.file)
    except OSError as e:
        print(f"Error: cannot read {args.file}: {e}", file=sys.stderr)
        return 1
    except ImportValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    output = args.output or args.file.with_suffix(".png")
    thumbnailer = GraphThumbnailer(size=(args.width, args.height))
    output.write_bytes(thumbnailer.render_png(document.nodes, document.edges))
    logger.info(f"Wrote thumbnail to {output}")
    print(output)
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """List workflows stored in the local workspace."""
    from workflow_studio.providers.local import FileWorkflowBackend

    backend = FileWorkflowBackend(args.workspace or args.settings.workspace_dir)
    workflows = backend.list_workflows()
    if not workflows:
        print("No saved workflows")
        return 0
    for workflow in workflows:
        print(f"{workflow['id']}  {workflow['name']}  ({workflow['node_count']} nodes)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workflow-studio",
        description="Inspect and preview Workflow Studio workflows",
    )
    parser.add_argument("--log-level", help="Logging level (default from settings)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    inspect_parser = subparsers.add_parser("inspect", help="Validate an exported workflow")
    inspect_parser.add_argument("file", type=Path)
    inspect_parser.set_defaults(func=cmd_inspect)

    thumb_parser = subparsers.add_parser("thumbnail", help="Render a PNG preview")
    thumb_parser.add_argument("file", type=Path)
    thumb_parser.add_argument("-o", "--output", type=Path)
    thumb_parser.add_argument("--width", type=int, default=640)
    thumb_parser.add_argument("--height", type=int, default=360)
    thumb_parser.set_defaults(func=cmd_thumbnail)

    list_parser = subparsers.add_parser("list", help="List locally saved workflows")
    list_parser.add_argument("--workspace", type=Path)
    list_parser.set_defaults(func=cmd_list)

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for Workflow Studio.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    # Ensure we're running Python 3.11+
    if sys.version_info < (3, 11):
        print("Error: Workflow Studio requires Python 3.11 or later")
        return 1

    from workflow_studio.core.settings import load_settings

    args = build_parser().parse_args(argv)
    args.settings = load_settings()

    logging.basicConfig(
        level=(args.log_level or args.settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
