from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from converge.app import (
    apply_configuration,
    force_unlock,
    list_state,
    plan_configuration,
    show_resource,
)
from converge.config import ConfigurationError, configure_logging
from converge.domain.errors import DefinitionError, StateError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)

_CANCELLATION = threading.Event()


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile declared resources with providers")
    parser.add_argument(
        "--workspace",
        type=str,
        default=None,
        help="State workspace to use (defaults to CONVERGE_WORKSPACE or 'default')",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan = subparsers.add_parser("plan", help="Show the changes an apply would make")
    plan.add_argument("config", type=str, help="Configuration document (.yaml, .json, .toml)")
    plan.add_argument(
        "--refresh",
        action="store_true",
        help="Read every recorded resource from its provider before planning",
    )
    plan.add_argument(
        "--destroy",
        action="store_true",
        help="Plan the deletion of every recorded resource",
    )

    apply = subparsers.add_parser("apply", help="Apply the configuration")
    apply.add_argument("config", type=str, help="Configuration document (.yaml, .json, .toml)")
    apply.add_argument(
        "--refresh",
        action="store_true",
        help="Read every recorded resource from its provider before planning",
    )

    destroy = subparsers.add_parser("destroy", help="Delete every recorded resource")
    destroy.add_argument("config", type=str, help="Configuration document (for type settings)")

    state = subparsers.add_parser("state", help="Inspect recorded state")
    state_sub = state.add_subparsers(dest="state_command", required=True)
    state_sub.add_parser("list", help="List recorded resource addresses")
    state_show = state_sub.add_parser("show", help="Show one recorded resource")
    state_show.add_argument("address", type=str, help="Resource address, e.g. network.main")

    subparsers.add_parser("force-unlock", help="Release a state lock left behind by a crash")

    return parser.parse_args(list(argv))


def _run(parsed_args: argparse.Namespace) -> int:
    workspace = parsed_args.workspace
    if parsed_args.command == "plan":
        plan_configuration(
            parsed_args.config,
            workspace=workspace,
            refresh=parsed_args.refresh,
            destroy=parsed_args.destroy,
        )
        return 0
    if parsed_args.command in {"apply", "destroy"}:
        report = apply_configuration(
            parsed_args.config,
            workspace=workspace,
            refresh=getattr(parsed_args, "refresh", False),
            destroy=parsed_args.command == "destroy",
            cancellation=_CANCELLATION,
        )
        return report.exit_code
    if parsed_args.command == "state" and parsed_args.state_command == "list":
        snapshot = list_state(workspace=workspace)
        for address in snapshot.addresses:
            print(address)  # noqa: T201
        log.info("State serial %s, %s resource(s)", snapshot.serial, len(snapshot))
        return 0
    if parsed_args.command == "state" and parsed_args.state_command == "show":
        resource = show_resource(parsed_args.address, workspace=workspace)
        document = {
            "address": str(resource.address),
            "provider": resource.provider,
            "id": resource.resource_id,
            "inputs": dict(resource.inputs),
            "outputs": dict(resource.outputs),
            "dependencies": [str(address) for address in resource.dependencies],
            "deposed": [old.resource_id for old in resource.deposed],
        }
        print(json.dumps(document, indent=2, sort_keys=True, default=str))  # noqa: T201
        return 0
    if parsed_args.command == "force-unlock":
        released = force_unlock(workspace=workspace)
        log.info("Lock %s", "released" if released else "was not held")
        return 0
    raise ValueError(f"Unsupported command: {parsed_args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)
    signal(SIGINT, sigint_handler)

    try:
        exit_code = _run(parsed_args)
    except (DefinitionError, ConfigurationError, ValueError) as exc:
        log.error("Invalid configuration: %s", exc)  # noqa: TRY400
        sys.exit(2)
    except KeyError as exc:
        log.error("%s", exc.args[0] if exc.args else exc)  # noqa: TRY400
        sys.exit(1)
    except StateError as exc:
        log.error("State error: %s", exc)  # noqa: TRY400
        sys.exit(1)
    except Exception:
        log.exception("Fatal error during run")
        sys.exit(1)
    sys.exit(exit_code)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C): stop scheduling new steps, exit on the second press."""
    if _CANCELLATION.is_set():
        log.info("Closed by user (Ctrl+C)")
        sys.exit(130)
    log.info("Cancelling: waiting for in-flight provider calls to finish (Ctrl+C again to quit)")
    _CANCELLATION.set()


if __name__ == "__main__":
    main()
