from typing import Any, Optional

from pydantic import BaseModel

SUCCESS_STATUSES = frozenset({"success", "succeeded", "completed"})
FAILURE_STATUSES = frozenset({"failed", "failure", "error", "canceled", "cancelled"})


class WebhookPayload(BaseModel):
    """Provider callback body.

    The provider is loose about field names (`id` vs `_id`) and shapes, so
    everything is optional and unknown keys are kept for the audit trail.
    """

    id: Optional[str] = None
    status: Optional[str] = None
    output: Optional[Any] = None
    error: Optional[Any] = None

    model_config = {"extra": "allow"}

    @classmethod
    def from_raw(cls, raw: Any) -> "WebhookPayload":
        if not isinstance(raw, dict):
            return cls()
        data = dict(raw)
        legacy_id = data.pop("_id", None)
        if not data.get("id") and legacy_id:
            data["id"] = legacy_id
        if data.get("id") is not None:
            data["id"] = str(data["id"])
        if data.get("status") is not None:
            data["status"] = str(data["status"])
        return cls.model_validate(data)

    def normalized_status(self) -> str:
        return (self.status or "").strip().lower()

    def is_success(self) -> bool:
        return self.normalized_status() in SUCCESS_STATUSES

    def is_failure(self) -> bool:
        return self.normalized_status() in FAILURE_STATUSES

    def output_url(self) -> Optional[str]:
        """First usable output URL; some payloads carry a list of outputs."""
        out = self.output
        if isinstance(out, list):
            out = next((o for o in out if isinstance(o, str) and o), None)
        if isinstance(out, str) and out.strip():
            return out.strip()
        return None

    def error_message(self) -> str:
        if isinstance(self.error, str) and self.error.strip():
            return self.error.strip()
        if isinstance(self.error, dict):
            return str(self.error.get("message") or self.error)
        return "Provider reported failure"


class ManualWebhookRequest(BaseModel):
    job_id: str
    webhook_payload: dict
