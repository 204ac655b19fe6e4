"""Subscription AI service: message classification and billing fact extraction.

Both operations:
- sanitize sender, subject and body against prompt injection
- truncate the body at a word boundary (classification and extraction budgets differ)
- run the remote call through the ResilientCaller (retry, circuit breaker, permits)
- convert every expected failure into a Result carrying an ErrorCode

Privacy Constraints (non-negotiable):
- Never log prompts or raw message content at INFO level
"""

from __future__ import annotations

import logging
import math
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

import httpx

from ..confidence import ConfidenceAggregator
from ..errors import (
    CircuitOpenError,
    MalformedResponseError,
    OperationCancelledError,
    RemoteCallError,
)
from ..schemas.extraction import ClassificationResult, ExtractionResult
from ..schemas.messages import RawMessage
from ..schemas.result import ErrorCode, Result
from ..schemas.subscription import BillingCycle
from .prompts import ClassificationPrompt, ExtractionPrompt
from .text import sanitize, truncate_at_word_boundary

if TYPE_CHECKING:
    from ..config import Config
    from ..resilience import CancellationToken, ResilientCaller
    from .client import LLMClient

logger = logging.getLogger(__name__)

WARNING_PRICE_UNPARSEABLE = "Price could not be parsed"

_PRICE_CHARS_RE = re.compile(r"[^\d.,\-]")


def _clamp(value: float) -> float:
    # NaN and infinities count as no confidence
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


class SubscriptionAIService:
    """Classifier and extractor backed by a remote chat model.

    The service never raises for remote failures; callers branch on
    Result.ok and Result.error.code.
    """

    def __init__(
        self,
        client: LLMClient,
        caller: ResilientCaller,
        config: Config,
        aggregator: ConfidenceAggregator | None = None,
    ) -> None:
        self.client = client
        self.caller = caller
        self.config = config
        self.aggregator = aggregator or ConfidenceAggregator(config.confidence)
        self._classification_prompt = ClassificationPrompt()
        self._extraction_prompt = ExtractionPrompt()

    @property
    def target_name(self) -> str:
        return self.config.llm.target_name

    def classify(
        self,
        message: RawMessage,
        cancel_token: CancellationToken | None = None,
    ) -> Result[ClassificationResult]:
        """Decide whether a message concerns a recurring paid service."""
        invalid = self._validate(message)
        if invalid is not None:
            return invalid

        logger.debug("Classifying message %s", message.external_id)
        user_prompt = self._classification_prompt.format_user_message(
            **self._prepare(message, self.config.pipeline.classification_body_limit)
        )

        response = self._call(self._classification_prompt.system_prompt, user_prompt, cancel_token)
        if not response.ok:
            return response  # type: ignore[return-value]

        data = response.value
        related = data.get("isSubscriptionRelated")
        if not isinstance(related, bool):
            return Result.failure(
                ErrorCode.MALFORMED_RESPONSE,
                "Classification response lacks a boolean isSubscriptionRelated",
            )

        try:
            confidence = _clamp(float(data.get("confidence") or 0.0))
        except (TypeError, ValueError):
            return Result.failure(
                ErrorCode.MALFORMED_RESPONSE, "Classification confidence is not a number"
            )

        result = ClassificationResult(
            is_subscription_related=related,
            confidence=confidence,
            email_type=str(data.get("emailType") or "other"),
            reason=str(data.get("reason") or ""),
        )
        logger.info(
            "Message %s classified as %s with confidence %.2f",
            message.external_id,
            "subscription-related" if result.is_subscription_related else "unrelated",
            result.confidence,
        )
        return Result.success(result)

    def extract(
        self,
        message: RawMessage,
        cancel_token: CancellationToken | None = None,
    ) -> Result[ExtractionResult]:
        """Extract billing facts and assess their confidence."""
        invalid = self._validate(message)
        if invalid is not None:
            return invalid

        logger.debug("Extracting subscription data from message %s", message.external_id)
        user_prompt = self._extraction_prompt.format_user_message(
            **self._prepare(message, self.config.pipeline.extraction_body_limit)
        )

        response = self._call(self._extraction_prompt.system_prompt, user_prompt, cancel_token)
        if not response.ok:
            return response  # type: ignore[return-value]

        extraction = self._map_extraction(response.value)
        self.aggregator.assess(extraction)

        logger.info(
            "Extracted subscription %s (%s %s, %s), confidence %.2f (%s)",
            extraction.service_name or "<unknown>",
            extraction.price,
            extraction.currency,
            extraction.billing_cycle.value,
            extraction.confidence_score,
            extraction.confidence_tier.value,
        )
        return Result.success(extraction)

    # ------------------------------------------------------------------

    @staticmethod
    def _validate(message: RawMessage | None) -> Result | None:
        if message is None:
            return Result.failure(ErrorCode.INVALID_MESSAGE, "No message given")
        if not (message.sender or message.subject or message.body):
            return Result.failure(
                ErrorCode.INVALID_MESSAGE, f"Message {message.external_id} has no content"
            )
        return None

    @staticmethod
    def _prepare(message: RawMessage, body_limit: int) -> dict[str, Any]:
        # Sanitize before truncating so a phrase cannot straddle the cut
        return {
            "sender": sanitize(message.sender),
            "subject": sanitize(message.subject),
            "received_at": message.received_at,
            "body": truncate_at_word_boundary(sanitize(message.body), body_limit),
        }

    def _call(
        self,
        system_prompt: str,
        user_prompt: str,
        cancel_token: CancellationToken | None,
    ) -> Result[dict]:
        def operation() -> dict:
            return self.client.complete_json(
                system_prompt, user_prompt, self.config.llm.temperature
            )

        try:
            return Result.success(self.caller.execute(self.target_name, operation, cancel_token))
        except CircuitOpenError as e:
            logger.warning("Skipping call to %s: %s", self.target_name, e)
            return Result.failure(ErrorCode.CIRCUIT_OPEN, str(e))
        except MalformedResponseError as e:
            logger.warning("Malformed response from %s: %s", self.target_name, e)
            return Result.failure(ErrorCode.MALFORMED_RESPONSE, str(e))
        except OperationCancelledError as e:
            return Result.failure(ErrorCode.CANCELLED, str(e))
        except (RemoteCallError, httpx.HTTPError, OSError) as e:
            logger.error("Call to %s failed: %s", self.target_name, e)
            return Result.failure(ErrorCode.REMOTE_UNAVAILABLE, str(e))

    def _map_extraction(self, data: dict) -> ExtractionResult:
        warnings: list[str] = []

        price = self._parse_price(data.get("price"))
        if price is None:
            if data.get("price") is not None:
                warnings.append(WARNING_PRICE_UNPARSEABLE)
            price = Decimal("0")

        return ExtractionResult(
            service_name=str(data.get("serviceName") or "").strip(),
            price=price,
            currency=str(data.get("currency") or "USD").strip().upper(),
            billing_cycle=BillingCycle.parse(_as_text(data.get("billingCycle"))),
            next_renewal_date=self._parse_date(data.get("nextRenewalDate")),
            category=str(data.get("category") or "Other").strip(),
            cancellation_link=_as_text(data.get("cancellationLink")) or None,
            is_trial=data.get("isTrial") is True,
            field_confidences=self._parse_confidences(data.get("fieldConfidences")),
            warnings=warnings,
        )

    @staticmethod
    def _parse_price(raw: Any) -> Decimal | None:
        """Parse 9.99, "9.99", "$9.99" or "9,99 EUR". Returns None when unparseable."""
        if raw is None or isinstance(raw, bool):
            return None
        if isinstance(raw, (int, float)):
            return Decimal(str(raw))

        text = _PRICE_CHARS_RE.sub("", str(raw))
        if "," in text and "." not in text:
            # European decimal comma
            text = text.replace(",", ".")
        else:
            text = text.replace(",", "")

        try:
            return Decimal(text)
        except InvalidOperation:
            return None

    @staticmethod
    def _parse_date(raw: Any) -> date | None:
        text = _as_text(raw)
        if not text:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            logger.debug("Unparseable renewal date %r", text)
            return None

    @staticmethod
    def _parse_confidences(raw: Any) -> dict[str, float]:
        if not isinstance(raw, dict):
            return {}
        confidences = {}
        for name, value in raw.items():
            if isinstance(value, bool):
                continue
            try:
                confidences[str(name)] = _clamp(float(value))
            except (TypeError, ValueError):
                continue
        return confidences


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
