from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Sequence

from tenant_broker.config import Settings, SettingsManager, SignInMode
from tenant_broker.services import DiscoveryEvent, DiscoveryEventKind, RealmDiscovery
from tenant_broker.utils import (
    CancellationError,
    CancellationTokenSource,
    LoggingOptions,
    configure_logging,
    get_logger,
)
from tenant_broker.utils.errors import describe_exception

__version__ = "0.1.0"


def main(argv: Sequence[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    log_path = configure_logging(
        LoggingOptions(debug=args.debug, level="WARNING" if args.quiet else "INFO")
    )
    logger = get_logger(__name__)

    settings = SettingsManager().load()
    _apply_overrides(settings, args)
    logger.info(
        "Starting tenant discovery",
        client_id=settings.client_id,
        authority=settings.authority,
        sign_in_mode=settings.sign_in_mode.value,
    )

    discovery = RealmDiscovery(settings, device_code_prompt=_print_device_prompt)
    discovery.events.subscribe(_print_event)

    source = CancellationTokenSource()
    if settings.timeout_seconds:
        source.cancel_after(settings.timeout_seconds)
    try:
        with source as token:
            result = asyncio.run(discovery.run(token))
    except KeyboardInterrupt:
        logger.info("Discovery interrupted by user")
        raise SystemExit(130)
    except (CancellationError, Exception) as exc:  # noqa: BLE001 - report any failure to the operator
        descriptor = describe_exception(exc)
        logger.error(
            descriptor.headline,
            detail=descriptor.detail,
            suggestion=descriptor.suggestion,
        )
        print(f"error: {descriptor.headline} {descriptor.detail}", file=sys.stderr)
        if descriptor.suggestion:
            print(f"hint: {descriptor.suggestion}", file=sys.stderr)
        if log_path is not None:
            print(f"log: {log_path}", file=sys.stderr)
        raise SystemExit(1) from exc

    print(
        f"*** discovered {len(result.tenants)} tenants and "
        f"{len(result.subscriptions)} subscriptions"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenant-broker",
        description="Sign in once and list the subscriptions of every reachable Azure tenant.",
    )
    parser.add_argument("--client-id", help="Public client application id")
    parser.add_argument("--authority", help="Authority used for the interactive sign-in")
    parser.add_argument(
        "--device-code",
        action="store_true",
        help="Sign in with the device code flow instead of a browser",
    )
    parser.add_argument(
        "--dump-cache",
        action="store_true",
        help="Print the token cache after sign-in and at the end of the run",
    )
    parser.add_argument("--timeout", type=float, help="Abort the run after this many seconds")
    parser.add_argument("--debug", action="store_true", help="Verbose console logging")
    parser.add_argument("--quiet", action="store_true", help="Only log warnings and errors")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> None:
    if args.client_id:
        settings.client_id = args.client_id
    if args.authority:
        settings.authority = args.authority
    if args.device_code:
        settings.sign_in_mode = SignInMode.DEVICE_CODE
    if args.dump_cache:
        settings.dump_cache = True
    if args.timeout:
        settings.timeout_seconds = args.timeout


def _print_event(event: DiscoveryEvent) -> None:
    match event.kind:
        case DiscoveryEventKind.SIGNED_IN if event.account is not None:
            print(f"*** signed in as {event.account.username or event.account.home_account_id}")
        case DiscoveryEventKind.TENANT_DISCOVERED if event.tenant is not None:
            print(f"*** discovered tenant: {event.tenant.label} ({event.tenant.tenant_id})")
        case DiscoveryEventKind.TENANT_STARTED:
            print(f"*** listing subscriptions for tenant: {event.tenant_id}")
        case DiscoveryEventKind.SUBSCRIPTION_DISCOVERED if event.subscription is not None:
            print(
                f"*** discovered subscription: {event.subscription.label} "
                f"({event.subscription.id})"
            )
        case _:
            pass


def _print_device_prompt(message: str) -> None:
    print(message, flush=True)


__all__ = ["main", "__version__"]
