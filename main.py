"""
ACME certificate lifecycle orchestrator — CLI entry point.

Usage:
  python main.py --once                     # Run one lifecycle cycle for every domain
  python main.py --ocsp                     # Refresh OCSP staples only
  python main.py --schedule                 # Daily cycle at SCHEDULE_TIME + OCSP every OCSP_REFRESH_HOURS
  python main.py --once --domains a.com b.com
  python main.py --once --inventory /etc/acme/inventory.json
"""
from __future__ import annotations

import argparse
import logging
import sys

import structlog

# ── Logging setup ─────────────────────────────────────────────────────────────

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger(__name__)


# ── Runners ───────────────────────────────────────────────────────────────────


def make_orchestrator(inventory_path: str | None = None):
    """Load the inventory and build an Orchestrator from the live settings."""
    from agent.orchestrator import Orchestrator
    from config import settings
    from registry.inventory import load_inventory

    inventory = load_inventory(inventory_path or settings.INVENTORY_PATH, settings.RENEW_DAYS)
    return Orchestrator(inventory, settings)


def _effective_domains(domains: list[str] | None) -> list[str] | None:
    from config import settings

    return domains or settings.MANAGED_DOMAINS or None


def run_once(domains: list[str] | None = None, inventory_path: str | None = None):
    """Execute one lifecycle cycle and return the CycleReport."""
    orchestrator = make_orchestrator(inventory_path)
    effective = _effective_domains(domains)
    log.info(
        "Starting lifecycle cycle for %s",
        ", ".join(effective) if effective else f"all {len(orchestrator.jobs)} domain(s)",
    )
    report = orchestrator.run_cycle(effective)
    log.info("Run complete — %s", report.summary())
    return report


def run_ocsp(domains: list[str] | None = None, inventory_path: str | None = None):
    """Refresh OCSP staples for every must-staple domain."""
    orchestrator = make_orchestrator(inventory_path)
    report = orchestrator.refresh_staples(_effective_domains(domains))
    log.info("OCSP refresh complete — %s", report.summary())
    return report


def run_scheduled(domains: list[str] | None = None, inventory_path: str | None = None) -> None:
    """Run lifecycle cycles daily and OCSP refreshes every few hours."""
    import schedule
    import time
    from config import settings

    orchestrator = make_orchestrator(inventory_path)
    effective = _effective_domains(domains)

    def lifecycle_job() -> None:
        log.info("Scheduled lifecycle cycle triggered")
        try:
            orchestrator.run_cycle(effective)
        except Exception as exc:
            log.exception("Scheduled lifecycle cycle failed: %s", exc)

    def ocsp_job() -> None:
        log.info("Scheduled OCSP refresh triggered")
        try:
            orchestrator.refresh_staples(effective)
        except Exception as exc:
            log.exception("Scheduled OCSP refresh failed: %s", exc)

    log.info(
        "Scheduling daily lifecycle cycle at %s and OCSP refresh every %dh",
        settings.SCHEDULE_TIME,
        settings.OCSP_REFRESH_HOURS,
    )
    schedule.every().day.at(settings.SCHEDULE_TIME).do(lifecycle_job)
    schedule.every(settings.OCSP_REFRESH_HOURS).hours.do(ocsp_job)

    log.info("Running initial cycle immediately...")
    lifecycle_job()
    ocsp_job()

    log.info("Entering schedule loop — press Ctrl+C to stop")
    while True:
        schedule.run_pending()
        time.sleep(60)


# ── CLI ───────────────────────────────────────────────────────────────────────


def main() -> None:
    from errors import ConfigurationError

    parser = argparse.ArgumentParser(
        description="ACME certificate lifecycle orchestrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --once
  python main.py --ocsp
  python main.py --schedule
  python main.py --once --domains example.com www.example.org
        """,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one lifecycle cycle immediately and exit",
    )
    parser.add_argument(
        "--ocsp",
        action="store_true",
        help="Refresh OCSP staples for must-staple domains and exit",
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Run on the configured schedule (SCHEDULE_TIME / OCSP_REFRESH_HOURS in .env)",
    )
    parser.add_argument(
        "--domains",
        nargs="+",
        metavar="DOMAIN",
        help="Restrict the run to these declared domains",
    )
    parser.add_argument(
        "--inventory",
        metavar="PATH",
        help="Inventory JSON file (default: INVENTORY_PATH)",
    )

    args = parser.parse_args()

    if not args.once and not args.ocsp and not args.schedule:
        parser.print_help()
        sys.exit(1)

    try:
        if args.once:
            report = run_once(domains=args.domains, inventory_path=args.inventory)
            sys.exit(1 if report.failed else 0)
        elif args.ocsp:
            run_ocsp(domains=args.domains, inventory_path=args.inventory)
        elif args.schedule:
            run_scheduled(domains=args.domains, inventory_path=args.inventory)
    except ConfigurationError as exc:
        log.error("Configuration error: %s", exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
