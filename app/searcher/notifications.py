"""
Apprise notification functions for the bundle searcher.
"""

import time

from apprise import Apprise
from web3 import Web3

from .config_loader import SearcherConfig
from .logging_config import setup_logger
from .models import OpportunityOutcome, OpportunityState

logger = setup_logger()


def setup_apprise_notification_object(config: SearcherConfig) -> Apprise:
    """Set up the Apprise notification engine."""
    apprise = Apprise()
    apprise.add(config.notification_url)
    return apprise


def _format_profit(profit) -> str:
    if profit is None:
        return "n/a"
    return f"{Web3.from_wei(profit, 'ether')} ETH"


def post_bundle_submitted_notification(outcome: OpportunityOutcome, config: SearcherConfig) -> bool:
    """Post a notification about a bundle the relay accepted."""
    message = (
        ":outbox_tray: *Liquidation Bundle Submitted* :outbox_tray:\n\n"
        f"*Borrower*: `{outcome.borrower}`\n"
        f"*Bundle*: `{outcome.bundle_hash}`\n"
        f"*Target Block*: `{outcome.target_block}`\n"
        f"*Simulated Profit*: `{_format_profit(outcome.profit)}`\n"
        f"Time of submission: {time.strftime('%Y-%m-%d %H:%M:%S')}\n"
        f"Network: `{config.chain_name}`\n"
    )
    logger.info("Bundle submitted notification:\n%s", message)

    apprise = setup_apprise_notification_object(config)
    return apprise.notify(body=message, title="Liquidation Bundle Submitted")


def post_bundle_outcome_notification(outcome: OpportunityOutcome, config: SearcherConfig) -> bool:
    """Post a notification with the result of a bundle status check."""
    if outcome.state == OpportunityState.INCLUDED:
        title = "Liquidation Bundle Included"
        header = ":moneybag: *Liquidation Bundle Included* :moneybag:"
    else:
        title = "Liquidation Bundle Not Included"
        header = ":hourglass: *Liquidation Bundle Not Included* :hourglass:"

    message = (
        f"{header}\n\n"
        f"*Borrower*: `{outcome.borrower}`\n"
        f"*Bundle*: `{outcome.bundle_hash}`\n"
        f"*Target Block*: `{outcome.target_block}`\n"
        f"*Simulated Profit*: `{_format_profit(outcome.profit)}`\n"
    )
    if outcome.reason:
        message += f"*Reason*: `{outcome.reason}`\n"
    message += f"Time of check: {time.strftime('%Y-%m-%d %H:%M:%S')}\nNetwork: `{config.chain_name}`\n"
    logger.info("Bundle outcome notification:\n%s", message)

    apprise = setup_apprise_notification_object(config)
    return apprise.notify(body=message, title=title)


def post_error_notification(message: str, config: SearcherConfig) -> bool:
    """Post an error notification."""
    error_message = f":rotating_light: *Error Notification* :rotating_light:\n\n{message}\n\n"
    error_message += f"Time: {time.strftime('%Y-%m-%d %H:%M:%S')}\n"
    error_message += f"Network: `{config.chain_name}`"

    logger.info("Error notification:\n%s", error_message)

    apprise = setup_apprise_notification_object(config)
    return apprise.notify(body=error_message, title="Error Notification")
