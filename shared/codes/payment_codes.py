"""
Payment specific codes and gateway status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003

    # Callback integrity (6005x)
    AMOUNT_MISMATCH = 60050


# VNPay vnp_ResponseCode -> standard outcome. Anything absent here is FAILED.
PROVIDER_STATUS_TO_INTERNAL = {
    "vnpay": {
        "00": "SUCCESS",
        "07": "PENDING",
        "09": "FAILED",
        "10": "FAILED",
        "11": "FAILED",
        "12": "FAILED",
        "13": "FAILED",
        "24": "CANCELLED",
        "51": "FAILED",
        "65": "FAILED",
        "75": "FAILED",
        "79": "FAILED",
        "99": "FAILED",
    },
}


# Customer-facing wording for the return page, keyed by vnp_ResponseCode.
VNPAY_RETURN_MESSAGES = {
    "00": "Your payment was completed successfully.",
    "07": "Your payment is being processed. The order will be confirmed once the bank verifies the transaction.",
    "09": "Your card or account has not been registered for internet banking.",
    "10": "Card or account authentication failed more than 3 times.",
    "11": "The payment session expired. Please try again.",
    "12": "Your card or account is locked.",
    "13": "The one-time password (OTP) was incorrect. Please try again.",
    "24": "You cancelled the payment.",
    "51": "Your account does not have sufficient balance.",
    "65": "Your account has exceeded its daily transaction limit.",
    "75": "The issuing bank is under maintenance. Please try again later.",
    "79": "The payment amount did not match. Please contact support.",
}
VNPAY_RETURN_DEFAULT_MESSAGE = "The payment could not be completed. Please contact support if you were charged."


class IpnAckCode:
    """Acknowledgement vocabulary returned to the gateway on IPN delivery."""

    SUCCESS = "00"
    ORDER_NOT_FOUND = "01"
    ALREADY_CONFIRMED = "02"
    INVALID_AMOUNT = "04"
    INVALID_SIGNATURE = "97"
    UNKNOWN_ERROR = "99"


IPN_ACK_MESSAGES = {
    IpnAckCode.SUCCESS: "Confirm Success",
    IpnAckCode.ORDER_NOT_FOUND: "Order not found",
    IpnAckCode.ALREADY_CONFIRMED: "Order already confirmed",
    IpnAckCode.INVALID_AMOUNT: "Invalid amount",
    IpnAckCode.INVALID_SIGNATURE: "Invalid signature",
    IpnAckCode.UNKNOWN_ERROR: "Unknown error",
}


# querydr vnp_TransactionStatus -> standard outcome. Anything absent here is FAILED.
VNPAY_QUERY_STATUS_TO_INTERNAL = {
    "00": "SUCCESS",
    "01": "PENDING",
    "07": "PENDING",
}
