from __future__ import annotations

import hashlib
import hmac
import json
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

SIGNATURE_TOLERANCE_SECONDS = 300


class StripeError(RuntimeError):
    pass


class StripeSignatureError(StripeError):
    pass


def _flatten(params: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Stripe form encoding: nested dicts/lists become key[sub][0]=value pairs."""
    out: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, dict):
            out.extend(_flatten(value, name))
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                if isinstance(item, dict):
                    out.extend(_flatten(item, f"{name}[{i}]"))
                else:
                    out.append((f"{name}[{i}]", str(item)))
        elif isinstance(value, bool):
            out.append((name, "true" if value else "false"))
        else:
            out.append((name, str(value)))
    return out


def encode_params(params: dict[str, Any]) -> str:
    return urllib.parse.urlencode(_flatten(params))


@dataclass(frozen=True)
class StripeClient:
    secret_key: str
    base_url: str = "https://api.stripe.com/v1"
    timeout_seconds: int = 30

    def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        retries: int = 2,
    ) -> dict[str, Any]:
        if not self.secret_key:
            raise StripeError("STRIPE_SECRET_KEY is not configured")
        url = self.base_url.rstrip("/") + path
        body: bytes | None = None
        if params and method == "GET":
            url += "?" + encode_params(params)
        elif params:
            body = encode_params(params).encode("utf-8")

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, data=body, method=method)
                req.add_header("Authorization", f"Bearer {self.secret_key}")
                req.add_header("Accept", "application/json")
                if body is not None:
                    req.add_header("Content-Type", "application/x-www-form-urlencoded")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    try:
                        return json.loads(raw.decode("utf-8"))
                    except ValueError as e:
                        raise StripeError(f"Invalid JSON from Stripe ({path})") from e
            except urllib.error.HTTPError as e:
                if e.code == 429:
                    time.sleep(min(2 * (attempt + 1), 10))
                    last_err = StripeError("Rate limited (429)")
                    continue
                try:
                    detail = json.loads(e.read().decode("utf-8", errors="ignore")).get("error", {}).get("message", "")
                except ValueError:
                    detail = ""
                raise StripeError(f"HTTP {e.code} from Stripe: {detail[:300]}") from e
            except urllib.error.URLError as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
                continue
        raise StripeError(f"Stripe request failed after retries: {last_err}")

    def create_customer(self, *, email: str, name: str, company: str | None = None, phone: str | None = None) -> dict[str, Any]:
        return self.request_json(
            "POST",
            "/customers",
            params={"email": email, "name": name, "phone": phone, "metadata": {"company": company}},
        )

    def create_subscription(self, *, customer_id: str, price_id: str, trial_days: int | None = None) -> dict[str, Any]:
        return self.request_json(
            "POST",
            "/subscriptions",
            params={
                "customer": customer_id,
                "items": [{"price": price_id}],
                "trial_period_days": trial_days,
                "payment_behavior": "default_incomplete",
                "expand": ["latest_invoice.payment_intent"],
            },
        )

    def cancel_subscription(self, subscription_id: str, *, at_period_end: bool = True) -> dict[str, Any]:
        sid = urllib.parse.quote(subscription_id)
        if at_period_end:
            return self.request_json("POST", f"/subscriptions/{sid}", params={"cancel_at_period_end": True})
        return self.request_json("DELETE", f"/subscriptions/{sid}")

    def list_invoices(self, customer_id: str, *, limit: int = 10) -> list[dict[str, Any]]:
        j = self.request_json("GET", "/invoices", params={"customer": customer_id, "limit": limit})
        data = j.get("data") or []
        return data if isinstance(data, list) else []


def compute_signature(payload: bytes, timestamp: str, secret: str) -> str:
    signed = timestamp.encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_webhook(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: float | None = None,
) -> dict[str, Any]:
    """
    Verify a Stripe-Signature header (t=<unix>,v1=<hex>[,v1=...]) and return the decoded event.
    Raises StripeSignatureError on any mismatch.
    """
    if not secret:
        raise StripeSignatureError("STRIPE_WEBHOOK_SECRET is not configured")
    if not signature_header:
        raise StripeSignatureError("Missing Stripe-Signature header")

    timestamp = ""
    candidates: list[str] = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            candidates.append(value)
    if not timestamp or not candidates:
        raise StripeSignatureError("Malformed Stripe-Signature header")
    try:
        ts = int(timestamp)
    except ValueError as e:
        raise StripeSignatureError("Malformed Stripe-Signature timestamp") from e
    if tolerance and abs((now if now is not None else time.time()) - ts) > tolerance:
        raise StripeSignatureError("Stripe-Signature timestamp outside tolerance")

    expected = compute_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, c) for c in candidates):
        raise StripeSignatureError("Stripe signature mismatch")
    try:
        event = json.loads(payload.decode("utf-8"))
    except ValueError as e:
        raise StripeSignatureError("Webhook payload is not valid JSON") from e
    if not isinstance(event, dict) or "type" not in event:
        raise StripeSignatureError("Webhook payload is not a Stripe event")
    return event


def client_from_config(config: dict) -> StripeClient:
    return StripeClient(secret_key=(config.get("STRIPE_SECRET_KEY") or "").strip())
