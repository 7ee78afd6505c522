"""Unit tests for domain errors and their wire format."""

from decimal import Decimal

import pytest

from commerce_core.models.errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    AlreadyFinalized,
    DuplicateEvent,
    ErrorCode,
    GatewayError,
    InsufficientStock,
    InvalidTransition,
    OverRefund,
    get_user_friendly_stripe_message,
    is_stripe_error_retryable,
)


def test_every_code_has_message_and_recovery() -> None:
    for code in ErrorCode:
        assert ERROR_MESSAGES[code]
        assert ERROR_RECOVERY[code]


def test_codes_are_unique() -> None:
    values = [code.value for code in ErrorCode]
    assert len(values) == len(set(values))


def test_details_are_stringified() -> None:
    error = OverRefund("ORD-1", Decimal("25.00"), Decimal("20.00"))

    assert error.code == ErrorCode.OVER_REFUND
    assert error.details == {"order_id": "ORD-1", "requested": "25.00", "refundable": "20.00"}
    assert str(error) == (
        "Refund would exceed the captured amount "
        "(order_id=ORD-1, requested=25.00, refundable=20.00)"
    )


def test_to_response() -> None:
    response = InvalidTransition("pending", "Ship", order_id="ORD-1").to_response()

    assert response.success is False
    assert response.error_code == ErrorCode.INVALID_TRANSITION
    assert response.details == {"current": "pending", "event": "Ship", "order_id": "ORD-1"}
    assert response.model_dump(mode="json")["error_code"] == "ERR_ORDER_001"


def test_insufficient_stock_keeps_quantities() -> None:
    error = InsufficientStock("SKU-1", "WH-1", requested=5, available=2)

    assert error.requested == 5
    assert error.available == 2
    assert error.details is not None
    assert error.details["available"] == "2"


def test_already_finalized() -> None:
    error = AlreadyFinalized("TRF-1", "completed")
    assert error.final_status == "completed"
    assert error.code == ErrorCode.ALREADY_FINALIZED


def test_duplicate_event_carries_the_event_id() -> None:
    error = DuplicateEvent("evt_1")

    assert error.external_event_id == "evt_1"
    assert error.to_response().model_dump(mode="json")["error_code"] == "ERR_GATEWAY_004"


def test_gateway_error_provider_code() -> None:
    error = GatewayError("declined", provider_code="card_declined")
    assert error.provider_code == "card_declined"
    assert error.details == {"error": "declined", "provider_code": "card_declined"}


@pytest.mark.parametrize(
    "code,expected",
    [
        ("charge_already_refunded", "This charge has already been refunded."),
        ("unknown_code", "fallback"),
        (None, "fallback"),
    ],
)
def test_user_friendly_stripe_message(code: str | None, expected: str) -> None:
    assert get_user_friendly_stripe_message(code, "fallback") == expected


def test_retryable_stripe_errors() -> None:
    assert is_stripe_error_retryable("rate_limit") is True
    assert is_stripe_error_retryable("charge_disputed") is False
    assert is_stripe_error_retryable(None) is False
