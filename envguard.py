#!/usr/bin/env python3
"""
EnvGuard - Main Controller and Module Metadata Aggregator

This module serves as the central controller for the environment guard,
wiring the protection components around one settings.json configuration and
providing the management CLI (status, scans, health checks, protected builds,
module help and configuration editing).
"""

import json
import logging
import sys
import time
from pathlib import Path
from typing import Callable, Dict, Any, List, MutableMapping, Optional, Tuple

from guard_modules import (
    GuardConfig,
    HealthLevel,
    ProcessInspector,
    ProtectionLevel,
    SystemProbe,
    build_coordinator,
    load_config,
    save_config
)
from guard_modules.build_guard import CommandRunner, run_command
from guard_modules.guard_config import DEFAULT_SETTINGS_FILE


class EnvGuardManager:
    """
    Main controller for the environment guard.

    Provides:
    - Component wiring through a single ProtectionCoordinator
    - Configuration loading/saving
    - Help system coordination across components
    - CLI interface coordination
    """

    def __init__(self, config_file: str = None,
                 probe: Optional[SystemProbe] = None,
                 inspector: Optional[ProcessInspector] = None,
                 environ: Optional[MutableMapping[str, str]] = None,
                 runner: CommandRunner = run_command,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize the EnvGuard manager.

        Args:
            config_file: Path to configuration file. If None, uses default location.
            probe, inspector, environ, runner, sleep: Host seams, real ones by default.
        """
        self.config_file = Path(config_file) if config_file else DEFAULT_SETTINGS_FILE
        self.config = self._load_config()
        self.coordinator = build_coordinator(self.config, probe=probe, inspector=inspector,
                                             environ=environ, runner=runner, sleep=sleep)
        self.version = "1.0.0"

    def _load_config(self) -> GuardConfig:
        config = load_config(str(self.config_file))
        if not self.config_file.exists():
            # First run: write the defaults so they can be edited
            save_config(config, str(self.config_file))
        return config

    def _components(self) -> Dict[str, Any]:
        coordinator = self.coordinator
        return {
            "threat_scanner": coordinator.scanner,
            "mitigation_engine": coordinator.engine,
            "health_aggregator": coordinator.aggregator,
            "continuous_monitor": coordinator.session.monitor,
            "build_guard": coordinator.guard
        }

    def get_module_help(self, module_name: str) -> Dict[str, Any]:
        """Get detailed help for specific module.

        Args:
            module_name: Name of module to get help for

        Returns:
            Module help data or error message
        """
        components = self._components()
        if module_name not in components:
            return {"error": f"Module '{module_name}' not found"}

        if not self.config.is_module_enabled(module_name):
            return {
                "error": f"Module '{module_name}' is disabled",
                "help": f"Use --config-set modules.{module_name}.enabled true to enable this module"
            }

        instance = components[module_name]
        if instance is not None and hasattr(instance, 'help_data'):
            return instance.help_data

        return {
            "name": module_name,
            "description": "Help data available once protection is initialized"
        }

    def list_modules(self) -> Dict[str, Any]:
        """List all modules with their status."""
        result = {}
        for name, instance in self._components().items():
            status_info = {
                "enabled": self.config.is_module_enabled(name),
                "initialized": instance is not None
            }
            if instance is not None and hasattr(instance, 'help_data'):
                help_data = instance.help_data
                status_info.update({
                    "name": help_data.get("name", "Unknown"),
                    "description": help_data.get("description", "No description"),
                    "features": help_data.get("features", [])
                })
            result[name] = status_info
        return result

    def get_config_value(self, key_path: str) -> Any:
        """Get configuration value using dot notation.

        Args:
            key_path: Configuration key path (e.g., 'monitor_intervals.STANDARD')

        Returns:
            Configuration value or None if not found
        """
        value = self.config.to_dict()
        try:
            for key in key_path.split('.'):
                value = value[key]
            return value
        except (KeyError, TypeError):
            return None

    def set_config_value(self, key_path: str, value: Any) -> Tuple[bool, str]:
        """Set configuration value using dot notation and save settings.json.

        The running coordinator keeps its configuration; the new value applies
        to the next run.
        """
        keys = key_path.split('.')
        data = self.config.to_dict()
        if keys[0] not in data:
            return False, f"Unknown configuration key '{keys[0]}'"

        try:
            config_ref = data
            for key in keys[:-1]:
                if key not in config_ref:
                    config_ref[key] = {}
                config_ref = config_ref[key]
            config_ref[keys[-1]] = value
            new_config = GuardConfig.from_dict(data)
        except (TypeError, ValueError) as e:
            return False, f"Failed to set configuration: {e}"

        if not save_config(new_config, str(self.config_file)):
            return False, f"Could not write {self.config_file}"
        self.config = new_config
        return True, f"Configuration '{key_path}' set to '{value}'"

    def get_system_status(self) -> Dict[str, Any]:
        """Get complete system status for diagnostics."""
        return {
            "version": self.version,
            "config_file": str(self.config_file),
            "modules": self.list_modules(),
            "protection": self.coordinator.get_status(include_health=False)
        }

    def run_build(self, target: str, level: ProtectionLevel = ProtectionLevel.STANDARD,
                  max_attempts: Optional[int] = None) -> Dict[str, Any]:
        """Initialize protection, run a protected build and shut protection down."""
        coordinator = self.coordinator
        coordinator.initialize(level)
        try:
            success = coordinator.run_protected_build(target, max_attempts)
        finally:
            coordinator.shutdown()
        return {
            "success": success,
            "target": target,
            "attempts": [a.to_dict() for a in coordinator.guard.last_attempts],
            "failure": str(coordinator.guard.last_failure) if coordinator.guard.last_failure else None
        }


def _threat_lines(threats: List[Dict[str, Any]]) -> List[str]:
    return [f"  [{t['severity']:8}] {t['category']:16} {t['description']}" for t in threats]


# Main CLI interface for standalone usage
def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point for envguard management."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Environment Guard Management Interface",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python envguard.py --health
  python envguard.py --scan
  python envguard.py --build MySolution.sln --level aggressive
  python envguard.py --help-module threat_scanner
  python envguard.py --config-set monitor_intervals.STANDARD 90
        """
    )

    parser.add_argument("--config", metavar="FILE", help="Path to settings.json")
    parser.add_argument("--status", action="store_true", help="Get protection status")
    parser.add_argument("--scan", action="store_true", help="Scan the environment for threats")
    parser.add_argument("--health", action="store_true", help="Run a full health check")
    parser.add_argument("--prepare", metavar="TARGET", help="Prepare the environment for building TARGET")
    parser.add_argument("--build", metavar="TARGET", help="Run a protected, resilient build of TARGET")
    parser.add_argument("--level", default="standard",
                        help="Protection level for --build (minimal, standard, aggressive, emergency)")
    parser.add_argument("--attempts", type=int, help="Maximum build attempts for --build")
    parser.add_argument("--cleanup", action="store_true", help="Perform post-build cleanup")
    parser.add_argument("--list-tools", action="store_true", help="List all modules and their status")
    parser.add_argument("--help-module", metavar="MODULE", help="Get help for specific module")
    parser.add_argument("--config-get", metavar="KEY", help="Get configuration value")
    parser.add_argument("--config-set", nargs=2, metavar=("KEY", "VALUE"), help="Set configuration value")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress to stderr")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING, stream=sys.stderr)

    manager = EnvGuardManager(args.config)
    coordinator = manager.coordinator

    if args.status:
        print("🛡️  Environment Guard Status:")
        print("=" * 50)
        print(json.dumps(manager.get_system_status(), indent=2))

    elif args.scan:
        threats = [t.to_dict() for t in coordinator.scanner.scan()]
        print(f"🔍 {len(threats)} threat(s) detected")
        print("=" * 50)
        for line in _threat_lines(threats):
            print(line)

    elif args.health:
        report = coordinator.perform_health_check()
        print(f"🩺 Environment health: {report.overall.name}")
        print("=" * 50)
        print(json.dumps(report.to_dict(), indent=2))
        return 1 if report.overall == HealthLevel.CRITICAL else 0

    elif args.prepare:
        ready = coordinator.prepare_for_build(args.prepare)
        print("✅ Environment ready for build" if ready else "❌ Environment not safe for build")
        return 0 if ready else 1

    elif args.build:
        try:
            level = ProtectionLevel.parse(args.level)
        except ValueError as e:
            print(f"❌ {e}")
            return 2
        result = manager.run_build(args.build, level, args.attempts)
        print(("✅ Build succeeded" if result["success"] else "❌ Build failed") + f": {args.build}")
        print(json.dumps(result, indent=2))
        return 0 if result["success"] else 1

    elif args.cleanup:
        coordinator.perform_post_build_cleanup()
        print("✅ Post-build cleanup completed")

    elif args.list_tools:
        modules = manager.list_modules()
        print("📦 Environment Guard Modules:")
        print("=" * 50)
        for name, info in modules.items():
            status = "✅ Enabled" if info["enabled"] else "❌ Disabled"
            print(f"{name:20} {status:12} {info.get('description', '')}")

    elif args.help_module:
        help_data = manager.get_module_help(args.help_module)
        print(f"📚 Help for {args.help_module}:")
        print("=" * 50)
        print(json.dumps(help_data, indent=2))

    elif args.config_get:
        value = manager.get_config_value(args.config_get)
        print(f"{args.config_get}: {json.dumps(value)}")

    elif args.config_set:
        key, value = args.config_set
        # Try to parse value as JSON for proper types
        try:
            parsed_value = json.loads(value)
        except json.JSONDecodeError:
            parsed_value = value  # Keep as string

        success, message = manager.set_config_value(key, parsed_value)
        print("✅" if success else "❌", message)
        return 0 if success else 1

    else:
        parser.print_help()

    return 0


if __name__ == "__main__":
    sys.exit(main())
