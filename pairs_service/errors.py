"""
异常体系
  DataFetchError          - 数据源返回失败或格式错误（携带出错的交易对）
  InsufficientSampleError - 对齐后的有效样本不足
  ComputationError        - 批量分析中单个组合的意外失败
  InvalidRequestError     - 请求参数不合法
"""

from typing import Any, Dict, Optional


class PairsServiceError(Exception):
    """服务异常基类，可直接序列化为错误响应"""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    message: str = "内部服务错误"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


class DataFetchError(PairsServiceError):
    status_code = 502
    error_code = "DATA_FETCH_ERROR"

    def __init__(self, symbol: str, message: str = "", status: Optional[int] = None):
        self.symbol = symbol
        self.status = status
        details: Dict[str, Any] = {"symbol": symbol}
        if status is not None:
            details["status"] = status
        super().__init__(f"{symbol} 数据获取失败: {message}", details)


class InsufficientSampleError(PairsServiceError):
    status_code = 422
    error_code = "INSUFFICIENT_SAMPLE"

    def __init__(self, available: int, required: int, window: Optional[int] = None):
        self.available = available
        self.required = required
        self.window = window
        details: Dict[str, Any] = {"available": available, "required": required}
        if window is not None:
            details["window"] = window
        super().__init__(
            f"有效数据不足: {available} 天（最少 {required} 天）", details
        )


class ComputationError(PairsServiceError):
    error_code = "COMPUTATION_ERROR"

    def __init__(self, pair: str, cause: Exception):
        self.pair = pair
        self.cause = cause
        super().__init__(f"{pair} 分析失败: {cause}", {"pair": pair})


class InvalidRequestError(PairsServiceError):
    status_code = 400
    error_code = "BAD_REQUEST"
    message = "请求参数不合法"
