"""Error taxonomy for the settlement engine.

Every error carries the HTTP status it maps to, so blueprints and the
app-level error handlers can render them without translating.

- ConfigurationError: missing processor credentials / bad plan catalog (500)
- ValidationError: malformed request, unknown tier where strict (400)
- NotFoundError: no order / account / artwork for a key (404)
- UpstreamProcessorError: Stripe rejected or failed a call (502)
"""


class SettlementError(Exception):
    status_code = 500
    code = "settlement_error"

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigurationError(SettlementError):
    status_code = 500
    code = "configuration_error"


class ValidationError(SettlementError):
    status_code = 400
    code = "validation_error"


class NotFoundError(SettlementError):
    status_code = 404
    code = "not_found"


class UpstreamProcessorError(SettlementError):
    status_code = 502
    code = "upstream_processor_error"

    def __init__(self, message, retryable=False, **details):
        super().__init__(message, **details)
        self.retryable = retryable
