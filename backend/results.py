import enum
from dataclasses import dataclass, field
from typing import Any, List, Optional


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    UNEXPECTED = "unexpected_error"


@dataclass
class ServiceResult:
    """
    Resultado de uma operacao de servico: sucesso, payload e mensagem.
    Condicoes esperadas nunca viram excecao fora da camada de servico.
    """

    success: bool
    value: Any = None
    message: str = ""
    error: Optional[ErrorKind] = None
    errors: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, value: Any = None) -> "ServiceResult":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: ErrorKind, message: str, errors: Optional[List[str]] = None) -> "ServiceResult":
        return cls(
            success=False,
            message=message,
            error=error,
            errors=list(errors) if errors else [message],
        )
