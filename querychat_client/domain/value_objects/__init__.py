from querychat_client.domain.value_objects.failure import Failure, FailureKind, OperationResult
from querychat_client.domain.value_objects.operation_status import OperationStatus

__all__ = ["Failure", "FailureKind", "OperationResult", "OperationStatus"]
