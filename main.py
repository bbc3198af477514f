#!/usr/bin/env python3
"""Main entry point for 811 locate request submission"""

import asyncio
import os
import sys
import argparse
import json
from loguru import logger
from dotenv import load_dotenv

LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"


def configure_logging(level: str = "INFO"):
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    logger.add("logs/locate_json_{time}.log", rotation="1 day", retention="7 days", level="DEBUG", serialize=True)


# Configure logger
configure_logging()

# Load environment variables
load_dotenv()

from src.ai.generator import TextGenerator
from src.analytics.metrics import SubmissionMetrics
from src.analytics.reporter import Reporter
from src.districts.registry import DistrictRegistry
from src.email.gmail_client import GmailSender
from src.memory.store import RequestStore
from src.status.poller import StatusPoller
from src.status.web_status_checker import WebStatusChecker
from src.submission.api_submitter import APISubmitter
from src.submission.email_submitter import EmailSubmitter
from src.submission.errors import SubmissionError
from src.submission.orchestrator import SubmissionOrchestrator
from src.submission.phone_submitter import PhoneSubmitter
from src.submission.service import SubmissionService
from src.submission.webform_submitter import WebFormSubmitter
from src.telephony.transcriber import WhisperTranscriber
from src.telephony.twilio_gateway import TwilioGateway


CHANNEL_VARS = {
    'api': ['USANORTH_API_KEY', 'DIGALERT_API_TOKEN'],
    'email': ['GMAIL_EMAIL'],
    'phone': ['TWILIO_ACCOUNT_SID', 'TWILIO_AUTH_TOKEN', 'TWILIO_PHONE_NUMBER', 'OPENAI_API_KEY'],
    'ai': ['ANTHROPIC_API_KEY'],
}


def report_channel_credentials():
    """Log which channels have their credentials configured"""
    for channel, vars_list in CHANNEL_VARS.items():
        available = [var for var in vars_list if os.getenv(var)]
        missing = [var for var in vars_list if not os.getenv(var)]

        if available:
            logger.info(f"{channel.upper()} credentials: {len(available)}/{len(vars_list)} available")
        if missing:
            logger.warning(f"{channel.upper()} missing: {missing}")


def build_components() -> dict:
    """Wire store, registry, adapters, orchestrator, service and poller"""
    store = RequestStore()
    registry = DistrictRegistry()
    metrics = SubmissionMetrics()
    generator = TextGenerator()

    email_submitter = None
    try:
        email_submitter = EmailSubmitter(GmailSender())
    except ValueError as e:
        logger.warning(f"Email channel disabled: {e}")

    phone_submitter = None
    try:
        phone_submitter = PhoneSubmitter(TwilioGateway(), WhisperTranscriber(), generator=generator)
    except ValueError as e:
        logger.warning(f"Phone channel disabled: {e}")

    orchestrator = SubmissionOrchestrator(
        store,
        api_submitter=APISubmitter(),
        email_submitter=email_submitter,
        phone_submitter=phone_submitter,
        webform_submitter=WebFormSubmitter(generator=generator, metrics=metrics),
        metrics=metrics,
    )

    return {
        'store': store,
        'registry': registry,
        'metrics': metrics,
        'service': SubmissionService(store, registry, orchestrator),
        'poller': StatusPoller(store, registry, WebStatusChecker(), metrics=metrics),
        'reporter': Reporter(store, registry),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='811 Locate Request Submission')
    parser.add_argument('--headless', action='store_true', help='Run browser in headless mode (no UI)')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode (save screenshots, verbose logging)')
    sub = parser.add_subparsers(dest='command', required=True)

    submit = sub.add_parser('submit', help='Create a request from a JSON file and submit it')
    submit.add_argument('request_file', help='Path to request JSON')
    submit.add_argument('--method', choices=['api', 'web', 'email', 'phone'], help='Channel to start with')

    retry = sub.add_parser('retry', help='Resubmit a failed request')
    retry.add_argument('request_id')

    status = sub.add_parser('status', help='Check a request ticket status on the district portal')
    status.add_argument('request_id')

    poll = sub.add_parser('poll', help='Run the status poller')
    poll.add_argument('--once', action='store_true', help='Run a single sweep and exit')

    reconcile = sub.add_parser('reconcile', help='Replace a placeholder ticket id with the real ticket number')
    reconcile.add_argument('request_id')
    reconcile.add_argument('ticket_number')

    districts = sub.add_parser('districts', help='List one-call districts')
    districts.add_argument('--state', help='Filter by state/province code')

    sub.add_parser('metrics', help='Summarize submission activity from the status log')
    return parser


async def run_poller(poller: StatusPoller):
    await poller.start()
    logger.info(f"Poller status: {poller.get_polling_status()}")
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await poller.stop()


async def main():
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args()

    if args.headless:
        os.environ['HEADLESS'] = 'true'
        logger.info("Running in HEADLESS mode (no browser UI)")

    if args.debug:
        os.environ['DEBUG'] = 'true'
        configure_logging("DEBUG")
        logger.debug("DEBUG mode enabled (screenshots will be saved, verbose logging active)")

    try:
        if args.command == 'districts':
            Reporter(None, DistrictRegistry()).display_districts(args.state)
            return 0

        if args.command == 'metrics':
            store = RequestStore()
            metrics = SubmissionMetrics()
            metrics.replay_status_log(store.list_status_updates())
            Reporter(store, None).display_metrics(metrics.get_summary())
            return 0

        report_channel_credentials()
        components = build_components()
        service: SubmissionService = components['service']
        reporter: Reporter = components['reporter']

        if args.command == 'submit':
            with open(args.request_file, 'r') as f:
                request_data = json.load(f)
            if args.method:
                request_data['submission_method'] = args.method

            request = await service.create_request(request_data)
            logger.info(f"[{request.request_id}] Created request for {request.district_id}")
            await service.wait_for_pending()
            reporter.display_request(request.request_id)
            return 0 if components['store'].get(request.request_id).ticket_number else 1

        if args.command == 'retry':
            await service.retry_request(args.request_id)
            await service.wait_for_pending()
            reporter.display_request(args.request_id)
            return 0

        if args.command == 'status':
            result = await components['poller'].check_request_status(args.request_id)
            if result is None:
                logger.warning(f"[{args.request_id}] No status found on the district portal")
                return 1
            print(json.dumps(result, indent=2))
            return 0

        if args.command == 'poll':
            poller: StatusPoller = components['poller']
            if args.once:
                summary = await poller.run_sweep()
                logger.success(f"Sweep done: {summary['checked']} checked, {summary['changed']} changed")
                return 0
            await run_poller(poller)
            return 0

        if args.command == 'reconcile':
            service.reconcile_ticket(args.request_id, args.ticket_number)
            reporter.display_request(args.request_id)
            return 0

        parser.error(f"Unknown command {args.command}")

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except (KeyError, ValueError, SubmissionError) as e:
        logger.error(str(e))
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
