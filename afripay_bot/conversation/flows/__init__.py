"""Multi-step flows (onboarding, deposit, exchange, transfer) and single-shot menu commands."""

from afripay_bot.conversation.flows.deposit import DepositFlow
from afripay_bot.conversation.flows.exchange import ExchangeFlow
from afripay_bot.conversation.flows.menu import MenuCommands
from afripay_bot.conversation.flows.onboarding import OnboardingFlow
from afripay_bot.conversation.flows.transfer import TransferFlow

__all__ = [
    "DepositFlow",
    "ExchangeFlow",
    "MenuCommands",
    "OnboardingFlow",
    "TransferFlow",
]
