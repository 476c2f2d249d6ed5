"""
Command line entry point: run a YAML workflow.

    $ conductor run book.yaml --var topic="tide pools" --auto-approve
    $ conductor validate book.yaml
"""

import argparse
import asyncio
import json
import sys
from dataclasses import replace

from .agents.providers import MockProvider
from .config.container import Container, setup_container
from .config.settings import get_settings
from .core.approval import AutoApprovalChannel
from .core.determinism import fingerprint
from .core.loader import load_workflow
from .core.models import WorkflowResult
from .exceptions import ConductorError
from .observability.logging import get_logger, setup_logging
from .observability.tracing import TracingManager

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="conductor", description="Multi-agent workflow runner")
    parser.add_argument("--version", action="store_true", help="Show version")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Execute a workflow file")
    run.add_argument("workflow", help="Path to the workflow YAML")
    run.add_argument("--var", action="append", default=[], metavar="KEY=VALUE", help="Workflow variable")
    run.add_argument("--auto-approve", action="store_true", help="Approve every approval request")
    run.add_argument("--mock", action="store_true", help="Use a mock provider instead of HTTP")
    run.add_argument("--json", action="store_true", help="Print the result as JSON")

    validate = sub.add_parser("validate", help="Load and check a workflow file without running it")
    validate.add_argument("workflow", help="Path to the workflow YAML")
    return parser


def parse_vars(pairs: list[str]) -> dict[str, str]:
    variables = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConductorError(f"invalid --var {pair!r}, expected KEY=VALUE")
        variables[key] = value
    return variables


def format_result(result: WorkflowResult) -> str:
    lines = [
        f"workflow={result.name} run={result.run_id} success={result.success} "
        f"elapsed={result.total_elapsed:.2f}s"
    ]
    for outcome in result.stages.values():
        detail = f" ({outcome.failure})" if outcome.failure else ""
        lines.append(
            f"  {outcome.stage_id}: {outcome.status.value} attempts={outcome.attempts} "
            f"regenerated={outcome.regenerate_count}{detail}"
        )
    return "\n".join(lines)


async def run_workflow(args: argparse.Namespace, container: Container) -> WorkflowResult:
    definition = load_workflow(args.workflow, container.settings)
    if args.var:
        definition = replace(
            definition, variables={**definition.variables, **parse_vars(args.var)}
        )

    async with container.lifespan():
        engine = container.get("engine")
        return await engine.run(definition)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        print(f"conductor {__version__}")
        return 0
    if not args.command:
        parser.print_help()
        return 0

    settings = get_settings()
    setup_logging(settings.observability.log_level)

    tracing = None
    if settings.observability.enable_tracing:
        tracing = TracingManager(settings.observability.service_name)
        tracing.initialize(console_export=settings.observability.console_spans)

    try:
        if args.command == "validate":
            definition = load_workflow(args.workflow, settings)
            print(f"{definition.name}: {len(definition.stages)} stages, fingerprint {fingerprint(definition.stages)}")
            return 0

        container = setup_container(settings)
        if args.mock:
            container.register_singleton("provider", MockProvider(name="default"))
        if args.auto_approve:
            container.register_singleton("approval_channel", AutoApprovalChannel())

        result = asyncio.run(run_workflow(args, container))
        print(json.dumps(result.to_dict(), indent=2) if args.json else format_result(result))
        return 0 if result.success else 1
    except ConductorError as e:
        logger.error(f"Workflow failed to start: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 2
    finally:
        if tracing:
            tracing.shutdown()


def cli_main():
    """Console script entry point."""
    try:
        sys.exit(main(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\ninterrupted")
        sys.exit(130)


if __name__ == "__main__":
    cli_main()
