"""Process entry point for the proxy reconfigurer."""

from __future__ import annotations

import argparse
import asyncio
import sys

from rich.console import Console

from proxy_reconfigurer.config import Settings, get_settings
from proxy_reconfigurer.services.controller import ReconfigurationController
from proxy_reconfigurer.utils.diagnostics import CredentialMissingError
from proxy_reconfigurer.utils.logging import get_logger


async def serve(app_settings: Settings) -> None:
    """Run the controller until a shutdown signal stops it."""

    logger = get_logger(app_settings.log_level)
    controller, platform = ReconfigurationController.build(app_settings, logger)
    try:
        await controller.run()
    finally:
        await platform.aclose()


def main(argv: list[str] | None = None, app_settings: Settings | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Keep an nginx configuration in sync with the services of a container platform."
    )
    parser.add_argument("--log-level", help="Override PROXY_LOG_LEVEL (DEBUG, INFO, WARNING, ...)")
    args = parser.parse_args(argv)

    app_settings = app_settings or get_settings()
    if args.log_level:
        app_settings = app_settings.model_copy(update={"log_level": args.log_level.upper()})

    try:
        app_settings.platform.require_auth()
    except CredentialMissingError as diagnostic:
        Console(stderr=True).print(f"[bold red]{diagnostic.message}[/bold red]")
        return 1

    asyncio.run(serve(app_settings))
    return 0


__all__ = ["main", "serve"]


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
