"""
Tests for the Stripe adapter.

Stripe SDK calls are patched; no network traffic.

Covers:
- Refund creation parameters and result mapping
- Translation of Stripe SDK errors into domain errors
- Webhook signature verification
- Idempotency key format
"""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from refunds.adapters import IdempotencyKeyGenerator, RefundResult, StripeAdapter
from refunds.exceptions import (
    StripeAPIUnavailableError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)


def make_stripe_refund(**overrides):
    refund = MagicMock()
    refund.id = overrides.get("id", "re_test_1")
    refund.amount = overrides.get("amount", 4000)
    refund.currency = "gbp"
    refund.status = overrides.get("status", "succeeded")
    refund.payment_intent = "pi_test_123"
    refund.metadata = {"order_id": "abc"}
    refund.to_dict.return_value = {"id": refund.id, "object": "refund"}
    return refund


class TestIdempotencyKeyGenerator:
    def test_format(self):
        key = IdempotencyKeyGenerator.generate("create_refund", "entry-1")

        operation, entity, attempt, digest = key.split(":")
        assert operation == "create_refund"
        assert entity == "entry-1"
        assert attempt == "1"
        assert len(digest) == 8

    def test_deterministic(self):
        first = IdempotencyKeyGenerator.generate("create_refund", "entry-1")
        second = IdempotencyKeyGenerator.generate("create_refund", "entry-1")

        assert first == second

    def test_attempt_changes_key(self):
        first = IdempotencyKeyGenerator.generate("create_refund", "entry-1", attempt=1)
        second = IdempotencyKeyGenerator.generate("create_refund", "entry-1", attempt=2)

        assert first != second


class TestCreateRefund:
    @patch("stripe.Refund.create")
    def test_success(self, mock_create):
        mock_create.return_value = make_stripe_refund()

        result = StripeAdapter.create_refund(
            payment_intent_id="pi_test_123",
            idempotency_key="key-1",
            amount_cents=4000,
            metadata={"order_id": "abc"},
        )

        assert isinstance(result, RefundResult)
        assert result.id == "re_test_1"
        assert result.amount_cents == 4000
        assert result.status == "succeeded"
        assert result.payment_intent_id == "pi_test_123"
        assert result.metadata == {"order_id": "abc"}
        assert result.raw_response == {"id": "re_test_1", "object": "refund"}

        mock_create.assert_called_once_with(
            idempotency_key="key-1",
            payment_intent="pi_test_123",
            metadata={"order_id": "abc"},
            amount=4000,
        )

    @patch("stripe.Refund.create")
    def test_full_refund_omits_amount(self, mock_create):
        mock_create.return_value = make_stripe_refund()

        StripeAdapter.create_refund(
            payment_intent_id="pi_test_123",
            idempotency_key="key-1",
            reason="requested_by_customer",
        )

        kwargs = mock_create.call_args.kwargs
        assert "amount" not in kwargs
        assert kwargs["reason"] == "requested_by_customer"

    @patch("stripe.Refund.create")
    def test_invalid_request(self, mock_create):
        mock_create.side_effect = stripe.InvalidRequestError(
            "Refund amount exceeds charge", param="amount", code="amount_too_large"
        )

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.create_refund("pi_test_123", "key-1", amount_cents=99999)

        assert exc_info.value.stripe_code == "amount_too_large"
        assert exc_info.value.is_retryable is False

    @patch("stripe.Refund.create")
    def test_rate_limited(self, mock_create):
        mock_create.side_effect = stripe.RateLimitError("Too many requests")

        with pytest.raises(StripeRateLimitError) as exc_info:
            StripeAdapter.create_refund("pi_test_123", "key-1", amount_cents=100)

        assert exc_info.value.is_retryable is True

    @patch("stripe.Refund.create")
    def test_timeout(self, mock_create):
        mock_create.side_effect = stripe.APIConnectionError("Request timed out")

        with pytest.raises(StripeTimeoutError):
            StripeAdapter.create_refund("pi_test_123", "key-1", amount_cents=100)

    @patch("stripe.Refund.create")
    def test_connection_error(self, mock_create):
        mock_create.side_effect = stripe.APIConnectionError("Connection refused")

        with pytest.raises(StripeAPIUnavailableError):
            StripeAdapter.create_refund("pi_test_123", "key-1", amount_cents=100)

    @patch("stripe.Refund.create")
    def test_authentication_error(self, mock_create):
        mock_create.side_effect = stripe.AuthenticationError("Invalid API key")

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.create_refund("pi_test_123", "key-1", amount_cents=100)

        assert exc_info.value.stripe_code == "authentication_error"

    @patch("stripe.Refund.create")
    def test_server_error(self, mock_create):
        mock_create.side_effect = stripe.APIError("Internal error")

        with pytest.raises(StripeAPIUnavailableError):
            StripeAdapter.create_refund("pi_test_123", "key-1", amount_cents=100)


class TestVerifyWebhookSignature:
    @patch("stripe.Webhook.construct_event")
    def test_valid_signature(self, mock_construct, settings):
        settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
        event = MagicMock()
        event.to_dict.return_value = {"id": "evt_1", "type": "charge.refunded"}
        mock_construct.return_value = event

        data = StripeAdapter.verify_webhook_signature(b"{}", "t=1,v1=abc")

        assert data == {"id": "evt_1", "type": "charge.refunded"}
        mock_construct.assert_called_once_with(b"{}", "t=1,v1=abc", "whsec_test")

    @patch("stripe.Webhook.construct_event")
    def test_invalid_signature(self, mock_construct):
        mock_construct.side_effect = stripe.SignatureVerificationError(
            "No signatures found", "t=1,v1=bad"
        )

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.verify_webhook_signature(b"{}", "t=1,v1=bad")

        assert exc_info.value.stripe_code == "signature_verification_failed"

    @patch("stripe.Webhook.construct_event")
    def test_invalid_payload(self, mock_construct):
        mock_construct.side_effect = ValueError("Invalid JSON")

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.verify_webhook_signature(b"not json", "t=1,v1=abc")

        assert exc_info.value.stripe_code == "invalid_payload"
