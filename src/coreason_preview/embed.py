# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview

from urllib.parse import urlsplit

# No allow-same-origin: guest scripts must not reach the host page.
IFRAME_SANDBOX = "allow-scripts allow-forms allow-popups"


def iframe_attributes(url: str) -> dict[str, str]:
    """Attributes for embedding a preview URL in an isolated iframe."""
    return {
        "src": url,
        "sandbox": IFRAME_SANDBOX,
        "referrerpolicy": "no-referrer",
        "allow": "",
        "title": "App Preview",
    }


def frame_src_policy(url: str) -> str:
    """Content-Security-Policy directive allowing the host page to frame only the preview origin."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Not an absolute URL: {url}")
    return f"frame-src {parts.scheme}://{parts.netloc}"
