"""工具函数模块"""

from .url import extract_hostname, match_domain, match_status, parse_url

__all__ = [
    "parse_url",
    "extract_hostname",
    "match_domain",
    "match_status",
]
