#!/usr/bin/env python3
"""
MCP Environment Guard Server
Environment health monitoring and adaptive mitigation through MCP protocol.

This server exposes the protection coordinator through MCP tools:
- env_health_check: Full health assessment with recommendations
- env_threat_scan: Snapshot of detected environment threats
- env_status: Protection level, active mitigations and monitoring state
- env_prepare_build: Get the environment ready before a build
- env_resilient_build: Protected build with pipe-break detection and retry
- env_post_build_cleanup: Kill orphaned tools and restore the build environment
- env_emergency: Apply emergency protections immediately
"""

import json
import logging
import sys
from typing import Optional, Annotated

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from envguard import EnvGuardManager
from guard_modules import HealthLevel, ProtectionLevel

# Set up logging to stderr (required for MCP stdio servers)
logging.basicConfig(level=logging.INFO, stream=sys.stderr)
logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("Environment Guard")

# Global manager instance - initialized in main
guard_manager: Optional[EnvGuardManager] = None


def _not_initialized() -> str:
    return json.dumps({
        "status": "error",
        "error": "Environment guard not initialized"
    })


@mcp.tool()
def env_health_check() -> str:
    """Run a comprehensive environment health check and return the report with recommendations."""
    try:
        if guard_manager is None:
            return _not_initialized()

        report = guard_manager.coordinator.perform_health_check()
        return json.dumps(report.to_dict())

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return json.dumps({
            "error": str(e)
        })


@mcp.tool()
def env_threat_scan(
    mitigate: Annotated[bool, Field(
        description="Apply mitigations for the detected threats",
        examples=[False, True]
    )] = False
) -> str:
    """Scan the environment for threats (memory, CPU, disk, network, security, stability, files, toolchain)."""
    try:
        if guard_manager is None:
            return _not_initialized()

        coordinator = guard_manager.coordinator
        if mitigate:
            threats = coordinator.force_environment_scan()
        else:
            threats = coordinator.scanner.scan()

        return json.dumps({
            "threats": [t.to_dict() for t in threats],
            "summary": coordinator.scanner.get_threat_summary(threats),
            "mitigated": mitigate,
            "active_mitigations": list(coordinator.session.active_mitigations)
        })

    except Exception as e:
        logger.error(f"Threat scan failed: {e}")
        return json.dumps({
            "error": str(e)
        })


@mcp.tool()
def env_status(
    include_health: Annotated[bool, Field(
        description="Run a fresh health check as part of the status",
        examples=[True, False]
    )] = True
) -> str:
    """Get protection status: level, active protections and mitigations, overrides and monitoring state."""
    try:
        if guard_manager is None:
            return _not_initialized()

        return json.dumps(guard_manager.coordinator.get_status(include_health=include_health))

    except Exception as e:
        logger.error(f"Status retrieval failed: {e}")
        return json.dumps({
            "error": str(e)
        })


@mcp.tool()
def env_prepare_build(
    target: Annotated[str, Field(
        description="Project or solution file about to be built",
        examples=["MySolution.sln", "src/App/App.csproj"]
    )]
) -> str:
    """Prepare the environment for a build. ready=false means building now is not recommended."""
    try:
        if guard_manager is None:
            return _not_initialized()

        coordinator = guard_manager.coordinator
        ready = coordinator.prepare_for_build(target)
        report = coordinator.session.last_report
        return json.dumps({
            "target": target,
            "ready": ready,
            "health": report.overall.name if report else HealthLevel.UNKNOWN.name,
            "environment_overrides": coordinator.overrides.overridden
        })

    except Exception as e:
        logger.error(f"Build preparation failed for {target}: {e}")
        return json.dumps({
            "error": str(e)
        })


@mcp.tool()
def env_resilient_build(
    target: Annotated[str, Field(
        description="Project or solution file to build",
        examples=["MySolution.sln", "src/App/App.csproj"]
    )],
    max_attempts: Annotated[int, Field(
        description="Maximum build attempts (0=configured default)",
        ge=0,
        le=10,
        examples=[0, 3, 5]
    )] = 0
) -> str:
    """Prepare, build with pipe-break detection and bounded retry, then clean up."""
    try:
        if guard_manager is None:
            return _not_initialized()

        coordinator = guard_manager.coordinator
        success = coordinator.run_protected_build(target, max_attempts or None)
        failure = coordinator.guard.last_failure
        return json.dumps({
            "target": target,
            "success": success,
            "attempts": [a.to_dict() for a in coordinator.guard.last_attempts],
            "failure": str(failure) if failure and not success else None
        })

    except Exception as e:
        logger.error(f"Resilient build failed for {target}: {e}")
        return json.dumps({
            "error": str(e)
        })


@mcp.tool()
def env_post_build_cleanup() -> str:
    """Kill orphaned build tools, clear tool temp files and restore environment overrides."""
    try:
        if guard_manager is None:
            return _not_initialized()

        guard_manager.coordinator.perform_post_build_cleanup()
        return json.dumps({
            "status": "completed",
            "environment_overrides": guard_manager.coordinator.overrides.overridden
        })

    except Exception as e:
        logger.error(f"Post-build cleanup failed: {e}")
        return json.dumps({
            "error": str(e)
        })


@mcp.tool()
def env_emergency() -> str:
    """Apply emergency protections now: GC, kill orphans, clean artifacts, conservative build settings."""
    try:
        if guard_manager is None:
            return _not_initialized()

        coordinator = guard_manager.coordinator
        coordinator.apply_emergency_protections()
        return json.dumps({
            "status": "applied",
            "protection_level": coordinator.session.protection_level.name,
            "environment_overrides": coordinator.overrides.overridden
        })

    except Exception as e:
        logger.error(f"Emergency protection failed: {e}")
        return json.dumps({
            "error": str(e)
        })


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="MCP Environment Guard Server")
    parser.add_argument("--config", help="Path to settings.json")
    parser.add_argument("--level", default="standard",
                        help="Protection level (minimal, standard, aggressive, emergency)")

    args, unknown = parser.parse_known_args()

    guard_manager = EnvGuardManager(args.config)
    guard_manager.coordinator.initialize(ProtectionLevel.parse(args.level))

    # Run MCP server with stdio transport
    logger.info("Starting MCP Environment Guard Server...")
    try:
        mcp.run(transport="stdio")
    finally:
        guard_manager.coordinator.shutdown()
