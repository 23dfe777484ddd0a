"""Flow step definitions and transition maps.

Every flow is forward-only: a step, once committed, is never re-entered.
A re-prompt keeps the current step and is not a transition.
"""

from __future__ import annotations

from enum import Enum

from afripay_bot.models.enums import DepositStep, ExchangeStep, FlowKind, OnboardingStep, TransferStep

# Transition map: {flow: {current_step: {allowed next steps}}}
TRANSITIONS: dict[FlowKind, dict[Enum, set[Enum]]] = {
    FlowKind.ONBOARDING: {
        OnboardingStep.CHOICE: {OnboardingStep.EMAIL, OnboardingStep.CONTACT},
        OnboardingStep.CONTACT: {OnboardingStep.CONSENT},
        OnboardingStep.CONSENT: {OnboardingStep.EMAIL},
        OnboardingStep.EMAIL: {OnboardingStep.PASSWORD},
        OnboardingStep.PASSWORD: {OnboardingStep.CONFIRM},
        OnboardingStep.CONFIRM: set(),
    },
    FlowKind.DEPOSIT: {
        DepositStep.AMOUNT: {DepositStep.WALLET},
        DepositStep.WALLET: {DepositStep.GATEWAY},
        DepositStep.GATEWAY: {DepositStep.RECEIPT, DepositStep.PHONE},
        DepositStep.RECEIPT: {DepositStep.CONFIRM},
        DepositStep.PHONE: {DepositStep.CONFIRM},
        DepositStep.CONFIRM: {DepositStep.PIN},
        DepositStep.PIN: set(),
    },
    FlowKind.EXCHANGE: {
        ExchangeStep.AMOUNT: {ExchangeStep.FROM_WALLET},
        ExchangeStep.FROM_WALLET: {ExchangeStep.TO_CURRENCY},
        ExchangeStep.TO_CURRENCY: {ExchangeStep.PIN},
        ExchangeStep.PIN: set(),
    },
    FlowKind.BANK_TRANSFER: {
        TransferStep.CHOICE: {TransferStep.WALLET},
        TransferStep.WALLET: {TransferStep.AMOUNT},
        TransferStep.AMOUNT: {TransferStep.BANK},
        TransferStep.BANK: {TransferStep.IBAN},
        TransferStep.IBAN: {TransferStep.ACCOUNT_NAME},
        TransferStep.ACCOUNT_NAME: {TransferStep.PURPOSE},
        TransferStep.PURPOSE: {TransferStep.INVOICE_SCAN},
        TransferStep.INVOICE_SCAN: {TransferStep.BANK_INFO_SCAN},
        TransferStep.BANK_INFO_SCAN: {TransferStep.ADDRESS},
        TransferStep.ADDRESS: {TransferStep.CONFIRM},
        TransferStep.CONFIRM: {TransferStep.PIN},
        TransferStep.PIN: set(),
    },
}

# Steps whose reply is checked with the PIN retry budget
PIN_STEPS: set[Enum] = {DepositStep.PIN, ExchangeStep.PIN, TransferStep.PIN}
