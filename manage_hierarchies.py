#!/usr/bin/env python3
"""
Sensor Hierarchy Management CLI Tool
Lists, exports, imports and checks the sensor hierarchies stored by the
sensor management service, using the same configuration as the service.
"""

import argparse
import json
import sys
from pathlib import Path

from sensorhub.app import build_store, configure_logging
from sensorhub.errors import ConnectivityError, MalformedInputError, StoreError
from sensorhub.hierarchy import SensorHierarchy, summarize
from sensorhub.hierarchy_store import WriteStatus
from sensorhub.main import _resolve_config_path, load_config


def _read_hierarchy(path: str) -> SensorHierarchy:
    return SensorHierarchy.from_json(Path(path).read_text(encoding="utf-8"))


def main():
    parser = argparse.ArgumentParser(description="Manage stored sensor hierarchies")
    parser.add_argument('--config', help='Path to config.yaml (overrides SENSORHUB_CONFIG and default)')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # List hierarchies command
    subparsers.add_parser('list', help='List all stored hierarchies')

    # Show hierarchy command
    show_parser = subparsers.add_parser('show', help='Print a hierarchy as a tree')
    show_parser.add_argument('identifier', help='Root sensor identifier')

    # Export hierarchy command
    export_parser = subparsers.add_parser('export', help='Write a hierarchy as JSON')
    export_parser.add_argument('identifier', help='Root sensor identifier')
    export_parser.add_argument('--output', '-o', help='Output file (default: stdout)')

    # Import hierarchy command
    import_parser = subparsers.add_parser('import', help='Create a hierarchy from a JSON file')
    import_parser.add_argument('file', help='JSON file with the hierarchy')

    # Update hierarchy command
    update_parser = subparsers.add_parser('update', help='Replace a hierarchy from a JSON file')
    update_parser.add_argument('file', help='JSON file with the new version of the hierarchy')

    # Delete hierarchy command
    delete_parser = subparsers.add_parser('delete', help='Delete a hierarchy')
    delete_parser.add_argument('identifier', help='Root sensor identifier')

    # Verify index command
    subparsers.add_parser('verify', help='Check the sensor index against the stored hierarchies')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    cfg = load_config(_resolve_config_path(args.config))
    configure_logging(cfg.logging)
    store = build_store(cfg)

    try:
        store.database.init_schema()
        run_command(store, args)
    except (ConnectivityError, StoreError) as e:
        print(f"❌ Sensor database error: {e}")
        sys.exit(1)
    except (MalformedInputError, OSError) as e:
        print(f"❌ Cannot read hierarchy: {e}")
        sys.exit(1)
    finally:
        store.close()


def run_command(store, args):
    if args.command == 'list':
        summaries = store.summaries()
        if summaries:
            print("📋 Stored sensor hierarchies:")
            print("-" * 50)
            for summary in summaries:
                print(f"{summary['identifier']}  {summary['name']}")
        else:
            print("📭 No sensor hierarchies stored")

    elif args.command == 'show':
        hierarchy = store.get(args.identifier)
        if hierarchy is None:
            print(f"❌ No sensor hierarchy found for {args.identifier}")
            sys.exit(1)
        print_tree(hierarchy)

    elif args.command == 'export':
        hierarchy = store.get(args.identifier)
        if hierarchy is None:
            print(f"❌ No sensor hierarchy found for {args.identifier}")
            sys.exit(1)
        text = json.dumps(hierarchy.to_dict(), indent=2)
        if args.output:
            Path(args.output).write_text(text + "\n", encoding="utf-8")
            print(f"✅ Exported {args.identifier} to {args.output}")
        else:
            print(text)

    elif args.command == 'import':
        hierarchy = _read_hierarchy(args.file)
        result = store.create(hierarchy)
        if result.status is WriteStatus.COLLISION:
            print(f"❌ Identifiers already in use: {', '.join(result.collisions)}")
            sys.exit(1)
        print(f"✅ Created hierarchy {hierarchy.identifier} with {len(hierarchy)} sensors")

    elif args.command == 'update':
        hierarchy = _read_hierarchy(args.file)
        result = store.update(hierarchy)
        if result.status is WriteStatus.NOT_FOUND:
            print(f"❌ No sensor hierarchy found for {hierarchy.identifier}")
            sys.exit(1)
        if result.status is WriteStatus.COLLISION:
            print(f"❌ Identifiers already in use: {', '.join(result.collisions)}")
            sys.exit(1)
        print(f"✅ Updated hierarchy {hierarchy.identifier}: {summarize(result.events)}")
        for event in result.events:
            print(f"  {event.event_type.value:8} {event.identifier} (parent: {event.sensor.parent_id})")

    elif args.command == 'delete':
        result = store.delete(args.identifier)
        if result.status is WriteStatus.NOT_FOUND:
            print(f"❌ No sensor hierarchy found for {args.identifier}")
            sys.exit(1)
        print(f"✅ Deleted hierarchy {args.identifier} ({len(result.events)} sensors)")

    elif args.command == 'verify':
        problems = store.verify_consistency()
        if problems:
            print(f"❌ Sensor index has {len(problems)} problem(s):")
            for problem in problems:
                print(f"  - {problem}")
            sys.exit(1)
        print("✅ Sensor index matches the stored hierarchies")


def print_tree(hierarchy: SensorHierarchy):
    """Print a hierarchy with one indented line per sensor."""
    stack = [(hierarchy.root, 0)]
    while stack:
        sensor, depth = stack.pop()
        marker = "+" if sensor.kind.value == "aggregated" else "-"
        print(f"{'  ' * depth}{marker} {sensor.identifier}  {sensor.name}")
        for child in reversed(hierarchy.children_of(sensor.identifier)):
            stack.append((child, depth + 1))


if __name__ == "__main__":
    main()
