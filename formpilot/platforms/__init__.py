"""
平台配置注册表

- register_platform_config / get_platform_config：按 platform_id 注册与查找（未知 id 回落 generic）
- detect_platform_from_url：运行开始前按职位链接选择平台
"""

from __future__ import annotations

from .amazon import AmazonPlatformConfig
from .generic import GenericPlatformConfig
from .workday import WorkdayPlatformConfig

_PLATFORM_CONFIGS: dict[str, GenericPlatformConfig] = {}

URL_PATTERNS: list[tuple[tuple[str, ...], str]] = [
    (("myworkdayjobs.com", "myworkday.com", "wd5.myworkdaysite.com"), "workday"),
    (("amazon.jobs",), "amazon"),
]


def register_platform_config(config: GenericPlatformConfig) -> None:
    _PLATFORM_CONFIGS[config.platform_id] = config


def get_platform_config(platform_id: str | None) -> GenericPlatformConfig:
    return _PLATFORM_CONFIGS.get(platform_id or "generic") or _PLATFORM_CONFIGS["generic"]


def detect_platform_from_url(url: str) -> GenericPlatformConfig:
    normalized = (url or "").lower()
    for needles, platform_id in URL_PATTERNS:
        if any(n in normalized for n in needles):
            config = _PLATFORM_CONFIGS.get(platform_id)
            if config is not None:
                return config
    return _PLATFORM_CONFIGS["generic"]


def list_platforms() -> list[dict]:
    return [
        {"platform_id": c.platform_id, "display_name": c.display_name}
        for c in _PLATFORM_CONFIGS.values()
    ]


register_platform_config(GenericPlatformConfig())
register_platform_config(WorkdayPlatformConfig())
register_platform_config(AmazonPlatformConfig())

__all__ = [
    "AmazonPlatformConfig",
    "GenericPlatformConfig",
    "WorkdayPlatformConfig",
    "detect_platform_from_url",
    "get_platform_config",
    "list_platforms",
    "register_platform_config",
]
