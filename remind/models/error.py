from pydantic import BaseModel


class ErrorInnerModel(BaseModel):
    message: str
    details: list[str]


class ErrorModel(BaseModel):
    error: ErrorInnerModel

    @classmethod
    def build(cls, message: str, details: list[str] | None = None) -> "ErrorModel":
        return cls(
            error=ErrorInnerModel(
                details=details or [],
                message=message,
            )
        )
