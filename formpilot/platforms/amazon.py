"""
Amazon Jobs 平台配置：只在 URL 识别上区别于通用配置。
"""

from __future__ import annotations

import re
from typing import Optional

from ..core.types import PageState
from .generic import GenericPlatformConfig

_JOB_PAGE_RE = re.compile(r"/en/jobs/\d+")


class AmazonPlatformConfig(GenericPlatformConfig):
    platform_id = "amazon"
    display_name = "Amazon Jobs"
    auth_domains = ("amazon.com", "amazon.jobs")

    def detect_page_by_url(self, url: str) -> Optional[PageState]:
        url = url or ""
        if "amazon.com/ap/signin" in url or "amazon.com/ap/mfa" in url:
            return PageState(page_type="login", page_title="Amazon Sign-In")

        google = super().detect_page_by_url(url)
        if google is not None:
            return google

        if "amazon.jobs" in url and _JOB_PAGE_RE.search(url):
            return PageState(
                page_type="job_listing", page_title="Amazon Job Listing", has_apply_button=True
            )
        return None
