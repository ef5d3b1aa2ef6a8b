"""CLI entry point for commlink."""

import argparse
import sys
from datetime import datetime, timedelta
from typing import Optional, Sequence

import pytz

from .calendar.graph_client import GraphCalendarClient
from .config import AppConfig, load_config
from .ics.builder import build_ics
from .mail.dispatcher import MailDispatcher
from .relay.client import MessageRelayClient
from .utils.exceptions import CommlinkError
from .utils.logging import setup_logging
from .utils.translations import DEFAULT_CATALOG, Translator


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="commlink",
        description="Commlink - mail, calendar and school platform messaging",
    )
    actions = parser.add_mutually_exclusive_group()
    actions.add_argument("--ics", action="store_true", help="Print a calendar invite")
    actions.add_argument("--send-mail", metavar="ADDRESS", help="Send a mail over SMTP")
    actions.add_argument("--list-events", metavar="ADDRESS", help="List calendar events")
    actions.add_argument(
        "--location-free",
        nargs="+",
        metavar="ADDRESS",
        help="Check whether the first location is free",
    )
    actions.add_argument(
        "--event-exists",
        nargs=2,
        metavar=("ADDRESS", "ICAL_UID"),
        help="Check whether an event exists",
    )
    actions.add_argument("--relay", metavar="RECIPIENT", help="Relay a message to the platform")

    parser.add_argument("--subject", default="", help="Subject / summary")
    parser.add_argument("--body", default="", help="Body / description")
    parser.add_argument("--location", default="", help="Invite location")
    parser.add_argument("--start", help="Start (ISO 8601, default: now)")
    parser.add_argument("--end", help="End (ISO 8601, default: start + 7 days)")
    parser.add_argument("--timezone", default="UTC", help="Zone for --start/--end (Graph)")
    parser.add_argument("--account", type=int, default=0, help="Relay co-account number")
    parser.add_argument("--ics-attach", action="store_true", help="Attach an invite to --send-mail")
    parser.add_argument("--test", action="store_true", help="Send to the test recipient / test user")
    parser.add_argument("--plain", action="store_true", help="Send --send-mail as plain text")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    return parser


def _window(args: argparse.Namespace) -> tuple[str, str]:
    start = args.start or datetime.now(pytz.utc).replace(microsecond=0).isoformat()
    if args.end:
        end = args.end
    else:
        end = (datetime.fromisoformat(start) + timedelta(days=7)).isoformat()
    return start, end


def _translator(config: AppConfig) -> Translator:
    return Translator.from_yaml(config.translations_file or DEFAULT_CATALOG, config.locale)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = load_config()
    log_level = "DEBUG" if args.verbose else config.log_level
    try:
        logger = setup_logging(level=log_level, log_file=config.log_file)
    except CommlinkError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        if args.ics:
            fields = {"summary": args.subject, "description": args.body, "location": args.location}
            if args.start:
                fields["dtstart"] = args.start
            if args.end:
                fields["dtend"] = args.end
            sys.stdout.write(build_ics(fields, timezone=config.ics_timezone))
            return 0

        if args.send_mail:
            sender = config.smtp.from_address
            if not sender:
                logger.error("MAIL_FROM_ADDRESS is not configured")
                return 1
            with MailDispatcher.from_config(config.smtp) as mailer:
                if args.ics_attach:
                    mailer.attach_ics(
                        {"summary": args.subject, "description": args.body, "location": args.location},
                        timezone=config.ics_timezone,
                    )
                mailer.send(
                    sender,
                    [args.send_mail],
                    args.subject,
                    args.body,
                    test_mode=args.test,
                    is_html=not args.plain,
                )
            print(f"Mail sent to {args.send_mail}")
            return 0

        if args.list_events or args.location_free or args.event_exists:
            client = GraphCalendarClient(config.graph, translator=_translator(config))
            if args.event_exists:
                address, ical_uid = args.event_exists
                exists = client.event_exists(address, ical_uid)
                print("exists" if exists else "not found")
                return 0 if exists else 1

            start, end = _window(args)
            if args.location_free:
                free = client.is_location_free(args.location_free, start, end, args.timezone)
                print("free" if free else "busy")
                return 0

            events = client.list_events(args.list_events, start, end, args.timezone)
            print(f"Found {len(events)} event(s):")
            for event in events:
                when = event.get("start", {}).get("dateTime", "?")
                print(f"  - {event.get('subject', '(no subject)')}")
                print(f"    When: {when}")
            return 0

        if args.relay:
            relay = MessageRelayClient.from_config(config.relay, translator=_translator(config))
            result = relay.send_mail(
                args.relay, args.subject, args.body, args.account, debug=args.test
            )
            if not result.success:
                logger.error(f"Relay failed: {result.error_message}")
                return 1
            print(f"Message relayed to {result.recipient}")
            return 0

        # No action specified
        parser.print_help()
        return 0

    except CommlinkError as e:
        logger.error(f"Commlink error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
