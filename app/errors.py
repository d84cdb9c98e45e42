from __future__ import annotations


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


class InvalidRuleDefinition(ApiError):
    """Raised when a review rule would violate one of its invariants."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="RULE_DEFINITION_INVALID",
            message=message,
            error_class="validation",
            retryable=False,
            http_status=400,
        )


class RuleNotFound(ApiError):
    def __init__(self, rule_id: str) -> None:
        super().__init__(
            code="RULE_NOT_FOUND",
            message=f"review rule not found: {rule_id}",
            error_class="validation",
            retryable=False,
            http_status=404,
        )
        self.rule_id = rule_id


class RuleNameConflict(ApiError):
    def __init__(self, name: str) -> None:
        super().__init__(
            code="RULE_NAME_CONFLICT",
            message=f"rule name already exists: {name}",
            error_class="business_rule",
            retryable=False,
            http_status=409,
        )
        self.name = name


class AlreadyActive(ApiError):
    """A contract already has a PENDING or IN_PROGRESS extraction run."""

    def __init__(self, contract_id: str, run_id: str | None = None) -> None:
        super().__init__(
            code="EXTRACTION_ALREADY_ACTIVE",
            message=f"contract {contract_id} already has an active extraction run",
            error_class="business_rule",
            retryable=False,
            http_status=409,
        )
        self.contract_id = contract_id
        self.run_id = run_id


class InvalidTransition(ApiError):
    def __init__(
        self,
        message: str,
        *,
        code: str = "EXTRACTION_TRANSITION_INVALID",
        error_class: str = "business_rule",
        http_status: int = 409,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            error_class=error_class,
            retryable=False,
            http_status=http_status,
        )


class UnknownRun(InvalidTransition):
    def __init__(self, run_id: str) -> None:
        super().__init__(
            f"extraction run not found: {run_id}",
            code="EXTRACTION_RUN_NOT_FOUND",
            error_class="validation",
            http_status=404,
        )
        self.run_id = run_id


class CodecError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(
            code="CODEC_DECODE_FAILED",
            message=message,
            error_class="internal",
            retryable=False,
            http_status=500,
        )
