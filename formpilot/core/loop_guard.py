"""
卡页检测（Stuck Detector）

职责：
- 生成页面签名：URL + 内容指纹
- 连续多次看到同一签名即判定为卡住
"""

from __future__ import annotations


def page_signature(url: str, fingerprint: str) -> str:
    return f"{url or ''}|{fingerprint or ''}"


class StuckDetector:
    """同一签名连续出现 max_same 次（含第一次）即判定卡住。"""

    def __init__(self, max_same: int = 3) -> None:
        self.max_same = max(1, int(max_same))
        self.last_signature = ""
        self.same_count = 0

    def observe(self, signature: str) -> bool:
        if self.same_count and signature == self.last_signature:
            self.same_count += 1
        else:
            self.last_signature = signature
            self.same_count = 1
        return self.same_count >= self.max_same

    def reset(self) -> None:
        self.last_signature = ""
        self.same_count = 0
