"""
Payment gateways used at checkout.

LuxePay is a simulated card/UPI/net-banking gateway. Its progress is derived
from elapsed time on an injectable clock, so a session polled at any moment
reports the same step the hosted modal would be showing. Razorpay is the
real provider; without credentials it answers with mock payments.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import string
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from storefront.config import Config
from storefront.observability import increment_counter, record_event

LUXEPAY_GATEWAY_NAME = "LuxePay Platinum"
LUXEPAY_METHODS = ("upi", "card", "netbanking")
LUXEPAY_STAGES = (
    "Securing end-to-end connection...",
    "Contacting payment provider...",
    "Authorizing transaction...",
    "Finalizing secure tokens...",
    "Payment verified by bank.",
)

RAZORPAY_PLACEHOLDER_KEYS = {"", "rzp_test_YourTestKeyHere", "rzp_test_placeholder"}
RAZORPAY_MOCK_SIGNATURE = "mock_signature_for_testing_purposes"

_BASE36 = string.digits + string.ascii_uppercase

Clock = Callable[[], float]


def _transaction_id() -> str:
    return "LX-" + "".join(secrets.choice(_BASE36) for _ in range(10))


def _now_ms() -> int:
    return int(time.time() * 1000)


class GatewayStep(str, Enum):
    METHOD = "method"
    PROCESSING = "processing"
    SUCCESS = "success"
    CANCELLED = "cancelled"


@dataclass
class LuxePaySession:
    id: str
    amount: float
    order_reference: str
    opened_at: float
    user_id: Optional[str] = None
    method: Optional[str] = None
    paid_at: Optional[float] = None
    cancelled: bool = False
    consumed: bool = False
    last_activity: float = 0.0
    finished_at: Optional[float] = None
    result: Optional[Dict[str, Any]] = field(default=None, repr=False)


class LuxePayGateway:
    """
    Timer-driven mock gateway: ``method -> processing -> success``.

    After ``pay`` each stage message holds for one stage interval. The
    session reaches ``success`` one settle delay after the last stage and the
    authorization result is released one release delay after that.

    Sessions belong to the shopper who opened them. Idle sessions are dropped
    after ``session_ttl``; consumed or cancelled ones after ``finished_retention``.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        stage_interval: Optional[float] = None,
        settle_delay: Optional[float] = None,
        release_delay: Optional[float] = None,
        session_ttl: Optional[float] = None,
        finished_retention: Optional[float] = None,
    ) -> None:
        self.clock = clock or time.monotonic
        self.stage_interval = stage_interval if stage_interval is not None else Config.LUXEPAY_STAGE_INTERVAL_SECONDS
        self.settle_delay = settle_delay if settle_delay is not None else Config.LUXEPAY_SETTLE_SECONDS
        self.release_delay = release_delay if release_delay is not None else Config.LUXEPAY_RELEASE_SECONDS
        self.session_ttl = session_ttl if session_ttl is not None else Config.LUXEPAY_SESSION_TTL_SECONDS
        self.finished_retention = (
            finished_retention if finished_retention is not None else Config.LUXEPAY_FINISHED_RETENTION_SECONDS
        )
        self._sessions: Dict[str, LuxePaySession] = {}
        self._lock = Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def success_after(self) -> float:
        return len(LUXEPAY_STAGES) * self.stage_interval + self.settle_delay

    @property
    def release_after(self) -> float:
        return self.success_after + self.release_delay

    @property
    def active_sessions(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._sessions)

    def open_session(
        self,
        amount: float,
        order_reference: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[LuxePaySession]]:
        try:
            amount = round(float(amount), 2)
        except (TypeError, ValueError):
            return False, "Invalid payment amount", None
        if amount <= 0:
            return False, "Payment amount must be positive", None

        now = self.clock()
        session = LuxePaySession(
            id=uuid.uuid4().hex,
            amount=amount,
            order_reference=order_reference or f"ORD-{_now_ms()}",
            opened_at=now,
            user_id=user_id,
            last_activity=now,
        )
        with self._lock:
            self._evict_expired()
            self._sessions[session.id] = session
        increment_counter("luxepay_sessions_opened_total")
        return True, "Payment session opened", session

    def get_session(self, session_id: str, user_id: Optional[str] = None) -> Optional[LuxePaySession]:
        """Look a session up; with ``user_id`` another shopper's session reads as missing."""
        with self._lock:
            self._evict_expired()
            session = self._sessions.get(session_id)
        if session is not None and user_id is not None and session.user_id != user_id:
            return None
        return session

    def select_method(self, session_id: str, method: str) -> Tuple[bool, str, Optional[LuxePaySession]]:
        session = self.get_session(session_id)
        if not session:
            return False, "Payment session not found", None
        if method not in LUXEPAY_METHODS:
            return False, f"Unsupported payment method {method}", None
        if self.step(session) != GatewayStep.METHOD:
            return False, "Payment method can no longer be changed", session
        session.method = method
        session.last_activity = self.clock()
        return True, "Payment method selected", session

    def pay(self, session_id: str) -> Tuple[bool, str, Optional[LuxePaySession]]:
        session = self.get_session(session_id)
        if not session:
            return False, "Payment session not found", None
        if self.step(session) != GatewayStep.METHOD:
            return False, "Payment is already in progress", session
        if not session.method:
            return False, "Please select a payment method", session
        session.paid_at = session.last_activity = self.clock()
        record_event("luxepay_payment_started", {"session_id": session.id, "method": session.method})
        return True, "Processing payment", session

    def cancel(self, session_id: str) -> Tuple[bool, str]:
        session = self.get_session(session_id)
        if not session:
            return False, "Payment session not found"
        if self.step(session) in (GatewayStep.SUCCESS, GatewayStep.CANCELLED):
            return False, "Payment can no longer be cancelled"
        session.cancelled = True
        session.finished_at = session.last_activity = self.clock()
        increment_counter("luxepay_sessions_cancelled_total")
        return True, "Payment cancelled"

    def step(self, session: LuxePaySession) -> GatewayStep:
        if session.cancelled:
            return GatewayStep.CANCELLED
        if session.paid_at is None:
            return GatewayStep.METHOD
        if self.clock() < session.paid_at + self.success_after:
            return GatewayStep.PROCESSING
        return GatewayStep.SUCCESS

    def poll(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self.get_session(session_id)
        if not session:
            return None

        step = self.step(session)
        stage = 0
        if session.paid_at is not None and step != GatewayStep.CANCELLED:
            now = self.clock()
            stage = min(int((now - session.paid_at) // self.stage_interval), len(LUXEPAY_STAGES) - 1)
            if step == GatewayStep.SUCCESS and now >= session.paid_at + self.release_after:
                self._release(session)

        return {
            "id": session.id,
            "amount": session.amount,
            "order_reference": session.order_reference,
            "method": session.method,
            "step": step.value,
            "stage": stage,
            "stage_message": LUXEPAY_STAGES[stage] if session.paid_at is not None else None,
            "result": dict(session.result) if session.result else None,
            "consumed": session.consumed,
        }

    def consume(
        self,
        session_id: str,
        amount: float,
        user_id: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        """Hand the authorization to checkout. Works once, for the owner and the session's amount."""
        self.poll(session_id)
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return False, "Payment session not found", None
            if session.user_id != user_id:
                self.logger.warning(
                    "LuxePay session used by another account",
                    extra={"session_id": session_id, "requested_by": user_id},
                )
                return False, "Payment session belongs to another account", None
            if session.result is None:
                return False, "Payment has not been authorized", None
            if session.consumed:
                return False, "Payment has already been used", None
            if abs(round(float(amount), 2) - session.amount) > 0.005:
                self.logger.warning(
                    "LuxePay amount mismatch",
                    extra={"session_id": session_id, "expected": session.amount, "received": amount},
                )
                return False, "Payment amount does not match the order total", None
            session.consumed = True
            session.finished_at = session.last_activity = self.clock()
            result = dict(session.result)

        increment_counter("luxepay_payments_authorized_total", labels={"method": session.method or "unknown"})
        return True, "Payment authorized", result

    def restore(self, session_id: str) -> bool:
        """Make a consumed authorization usable again after the order could not be saved."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not session.consumed:
                return False
            session.consumed = False
            session.finished_at = None
            session.last_activity = self.clock()
        self.logger.info("LuxePay authorization restored", extra={"session_id": session_id})
        return True

    def _evict_expired(self) -> None:
        # Caller holds the lock
        now = self.clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if (session.finished_at is not None and now >= session.finished_at + self.finished_retention)
            or now >= session.last_activity + self.session_ttl
        ]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            increment_counter("luxepay_sessions_evicted_total", amount=len(expired))

    def _release(self, session: LuxePaySession) -> None:
        with self._lock:
            if session.result is None:
                session.result = {
                    "gateway": LUXEPAY_GATEWAY_NAME,
                    "transactionId": _transaction_id(),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "status": "Authorized",
                    "method": session.method,
                }

    def reset(self) -> None:
        """Testing helper."""
        with self._lock:
            self._sessions.clear()


_default_gateway: Optional[LuxePayGateway] = None
_default_gateway_lock = Lock()


def get_luxepay_gateway() -> LuxePayGateway:
    global _default_gateway
    if _default_gateway is None:
        with _default_gateway_lock:
            if _default_gateway is None:
                _default_gateway = LuxePayGateway()
    return _default_gateway


class RazorpayClient:
    """Creates Razorpay orders over REST and verifies checkout signatures."""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[int] = None,
        http: Any = requests,
    ) -> None:
        self.key_id = Config.RAZORPAY_KEY_ID if key_id is None else key_id
        self.key_secret = Config.RAZORPAY_KEY_SECRET if key_secret is None else key_secret
        self.api_base = (api_base or Config.RAZORPAY_API_BASE).rstrip("/")
        self.timeout = timeout or Config.RAZORPAY_TIMEOUT_SECONDS
        self.http = http
        self.logger = logging.getLogger(__name__)

    @property
    def is_mock(self) -> bool:
        return (self.key_id or "") in RAZORPAY_PLACEHOLDER_KEYS

    def create_payment(
        self,
        amount: float,
        receipt: Optional[str] = None,
        notes: Optional[Dict[str, str]] = None,
    ) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        try:
            amount_paise = int(round(float(amount) * 100))
        except (TypeError, ValueError):
            return False, "Invalid payment amount", None
        if amount_paise <= 0:
            return False, "Payment amount must be positive", None

        if self.is_mock:
            stamp = _now_ms()
            self.logger.warning("Using mock Razorpay gateway: no key configured")
            increment_counter("razorpay_orders_total", labels={"mode": "mock"})
            return True, "Mock payment successful", {
                "razorpay_payment_id": f"pay_mock_{stamp}",
                "razorpay_order_id": receipt or f"order_mock_{stamp}",
                "razorpay_signature": RAZORPAY_MOCK_SIGNATURE,
                "isMock": True,
            }

        payload = {
            "amount": amount_paise,
            "currency": "INR",
            "receipt": receipt or f"rcpt_{_now_ms()}",
            "notes": dict(notes or {"app": "Luxe_Ecommerce"}),
        }
        try:
            response = self.http.post(
                f"{self.api_base}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            self.logger.error("Razorpay order request failed: %s", exc)
            increment_counter("razorpay_errors_total")
            return False, "Payment provider is unavailable", None

        if response.status_code not in (200, 201):
            self.logger.error(
                "Razorpay order request rejected",
                extra={"status_code": response.status_code},
            )
            increment_counter("razorpay_errors_total")
            return False, "Payment provider rejected the order", None

        order = response.json()
        increment_counter("razorpay_orders_total", labels={"mode": "live"})
        return True, "Payment order created", {
            "razorpay_order_id": order.get("id"),
            "amount": order.get("amount", amount_paise),
            "currency": order.get("currency", "INR"),
            "key": self.key_id,
            "isMock": False,
        }

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not order_id or not payment_id or not signature:
            return False
        if self.is_mock:
            return hmac.compare_digest(signature, RAZORPAY_MOCK_SIGNATURE)
        expected = hmac.new(
            self.key_secret.encode("utf-8"),
            f"{order_id}|{payment_id}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)
