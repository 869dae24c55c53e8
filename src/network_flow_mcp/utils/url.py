"""
URL 处理工具

解析目标地址、提取主机名，以及列表筛选用的域名/状态码匹配。
"""

import fnmatch
from urllib.parse import SplitResult, urlsplit


def parse_url(url: str) -> SplitResult | None:
    """
    解析请求 URL

    只有同时带 scheme 和主机名、且端口合法的 URL 才视为可解析。

    Args:
        url: 完整的 URL

    Returns:
        SplitResult，无法解析时返回 None
    """
    if not url:
        return None

    try:
        parsed = urlsplit(str(url))
        # 访问 port 时才会校验端口号
        parsed.port
    except ValueError:
        return None

    if not parsed.scheme or not parsed.hostname:
        return None

    return parsed


def extract_hostname(url: str) -> str:
    """从 URL 中提取主机名（小写，不含端口），无法解析时返回空字符串"""
    parsed = parse_url(url)
    return parsed.hostname if parsed else ""


def match_domain(hostname: str, pattern: str) -> bool:
    """
    域名匹配，支持通配符

    Args:
        hostname: 主机名
        pattern: 精确域名或通配符模式（如 *.example.com）
    """
    pattern = pattern.strip().lower()
    if not pattern:
        return True
    if "*" in pattern or "?" in pattern:
        return fnmatch.fnmatchcase(hostname, pattern)
    return hostname == pattern


def match_status(status: int, pattern: str) -> bool:
    """
    状态码匹配

    支持三种写法：精确值（200）、范围（500-599）、xx 模式（4xx）。
    无法识别的模式不做筛选。
    """
    pattern = pattern.strip().lower()

    # 精确匹配
    if pattern.isdigit():
        return status == int(pattern)

    # 范围匹配：200-299
    if "-" in pattern:
        try:
            start, end = pattern.split("-")
            return int(start) <= status <= int(end)
        except ValueError:
            return True

    # xx 模式：2xx, 4xx, 5xx
    if pattern.endswith("xx") and len(pattern) == 3:
        try:
            prefix = int(pattern[0])
        except ValueError:
            return True
        return prefix * 100 <= status <= prefix * 100 + 99

    return True
