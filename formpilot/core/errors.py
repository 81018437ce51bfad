"""
错误分类

- FatalRunError：预算 / 动作上限，不可重试，穿透所有层直达编排器
- ManualInterventionRequired：验证码、不支持的 2FA 等，需要人工接管
"""

from __future__ import annotations

FATAL_MESSAGE_MARKERS = ("Budget exceeded", "Action limit exceeded")


class FatalRunError(Exception):
    """不可恢复的运行级错误。"""


class BudgetExceededError(FatalRunError):
    def __init__(self, message: str, *, total_cost: float = 0.0, budget: float = 0.0):
        super().__init__(message)
        self.total_cost = total_cost
        self.budget = budget


class ActionLimitExceededError(FatalRunError):
    def __init__(self, message: str, *, action_count: int = 0, limit: int = 0):
        super().__init__(message)
        self.action_count = action_count
        self.limit = limit


class ManualInterventionRequired(Exception):
    """页面需要人工处理（CAPTCHA / 2FA / 缺少凭据）。"""


def is_fatal_error(exc: BaseException) -> bool:
    """按类型或规范消息前缀识别致命错误（适配器可能会包装原始异常）。"""
    if isinstance(exc, FatalRunError):
        return True
    message = str(exc)
    return any(marker in message for marker in FATAL_MESSAGE_MARKERS)
