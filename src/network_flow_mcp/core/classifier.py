"""
服务识别

根据目标 URL 判断请求落在哪一类服务上。
规则按顺序匹配，先命中者生效：

1. 域名规则：主机名包含表中的子串
2. 端口规则：显式端口是已知数据库端口
3. 路径规则：路径包含 /api/ 或 /graphql
4. 默认：普通 Web 服务器
"""

from urllib.parse import SplitResult, urlsplit

from .models import DetectedBy, ServiceCategory, ServiceDescriptor

# (子串, 服务名, 分类, 图标)，顺序即优先级
DomainRule = tuple[str, str, ServiceCategory, str]

DOMAIN_RULES: tuple[DomainRule, ...] = (
    # CDN
    ("cloudfront.net", "AWS CloudFront", ServiceCategory.CDN, "🌐"),
    ("akamai.net", "Akamai CDN", ServiceCategory.CDN, "🌐"),
    ("fastly.net", "Fastly", ServiceCategory.CDN, "🌐"),
    # 分析 / 广告
    ("google-analytics.com", "Google Analytics", ServiceCategory.ANALYTICS, "📊"),
    ("googletagmanager.com", "Google Tag Manager", ServiceCategory.ANALYTICS, "🏷️"),
    ("doubleclick.net", "Google Ads", ServiceCategory.ADVERTISING, "💰"),
    # 字体
    ("fonts.googleapis.com", "Google Fonts", ServiceCategory.FONT, "🔤"),
    ("fonts.gstatic.com", "Google Fonts CDN", ServiceCategory.FONT, "🔤"),
    # 音视频
    ("youtube.com", "YouTube", ServiceCategory.MEDIA, "🎬"),
    ("youtu.be", "YouTube", ServiceCategory.MEDIA, "🎬"),
    ("vimeo.com", "Vimeo", ServiceCategory.MEDIA, "🎥"),
    # 社交
    ("twitter.com", "Twitter", ServiceCategory.SOCIAL, "🐦"),
    ("facebook.com", "Facebook", ServiceCategory.SOCIAL, "👥"),
    ("instagram.com", "Instagram", ServiceCategory.SOCIAL, "📷"),
    # 托管数据库
    ("firebaseio.com", "Firebase Database", ServiceCategory.DATABASE, "🗄️"),
    ("supabase.co", "Supabase", ServiceCategory.DATABASE, "🗄️"),
    ("mongodb", "MongoDB", ServiceCategory.DATABASE, "🗄️"),
    # API
    ("api.", "API Endpoint", ServiceCategory.API, "🔌"),
    ("graphql", "GraphQL API", ServiceCategory.API, "🔌"),
    # 云服务
    ("aws.amazon.com", "AWS", ServiceCategory.CLOUD, "☁️"),
    ("azure.com", "Microsoft Azure", ServiceCategory.CLOUD, "☁️"),
    # 认证
    ("auth0.com", "Auth0", ServiceCategory.AUTH, "🔐"),
    ("okta.com", "Okta", ServiceCategory.AUTH, "🔐"),
    # 防火墙 / WAF
    ("cloudflare.com", "Cloudflare WAF", ServiceCategory.FIREWALL, "🛡️"),
    ("imperva.com", "Imperva WAF", ServiceCategory.FIREWALL, "🛡️"),
    # 负载均衡
    ("elb.amazonaws.com", "AWS ELB", ServiceCategory.LOADBALANCER, "⚖️"),
    # 监控
    ("newrelic.com", "New Relic", ServiceCategory.MONITORING, "📈"),
    ("datadoghq.com", "Datadog", ServiceCategory.MONITORING, "📈"),
    # 支付
    ("stripe.com", "Stripe", ServiceCategory.PAYMENT, "💳"),
    ("paypal.com", "PayPal", ServiceCategory.PAYMENT, "💳"),
    # 邮件
    ("smtp.", "SMTP Server", ServiceCategory.EMAIL, "📧"),
    ("mail.", "Mail Server", ServiceCategory.EMAIL, "📧"),
)

DATABASE_PORTS: dict[int, str] = {
    3306: "MySQL",
    5432: "PostgreSQL",
    1433: "Microsoft SQL Server",
    1521: "Oracle",
    27017: "MongoDB",
    6379: "Redis",
}

API_PATH_MARKERS = ("/api/", "/graphql")

DEFAULT_SERVICE_NAME = "Web Server"
DEFAULT_SERVICE_ICON = "🖥️"

# 节点颜色
CATEGORY_COLORS: dict[str, str] = {
    ServiceCategory.DATABASE.value: "#FF9800",
    ServiceCategory.CDN.value: "#9C27B0",
    ServiceCategory.ANALYTICS.value: "#F44336",
    ServiceCategory.AUTH.value: "#4CAF50",
    ServiceCategory.API.value: "#00BCD4",
}
DEFAULT_COLOR = "#2196F3"


def category_color(category: ServiceCategory | str) -> str:
    """分类对应的节点颜色，未列出的分类使用默认蓝色"""
    key = category.value if isinstance(category, ServiceCategory) else category
    return CATEGORY_COLORS.get(key, DEFAULT_COLOR)


class ServiceClassifier:
    """
    服务识别器

    纯函数式：同一 URL 总是得到同一结果，不会抛出异常。
    调用方需保证 URL 可解析。
    """

    def __init__(
        self,
        domain_rules: tuple[DomainRule, ...] | list[DomainRule] = DOMAIN_RULES,
        database_ports: dict[int, str] | None = None,
    ):
        self.domain_rules = tuple(domain_rules)
        self.database_ports = dict(DATABASE_PORTS if database_ports is None else database_ports)

    def classify(self, url: SplitResult | str) -> ServiceDescriptor:
        """
        识别 URL 对应的服务

        Args:
            url: 已解析的 SplitResult 或 URL 字符串

        Returns:
            ServiceDescriptor
        """
        parsed = urlsplit(url) if isinstance(url, str) else url
        hostname = parsed.hostname or ""

        # 域名规则
        for pattern, name, category, icon in self.domain_rules:
            if pattern in hostname:
                return ServiceDescriptor(name, category, icon, DetectedBy.DOMAIN)

        # 端口规则（仅显式端口）
        port = _explicit_port(parsed)
        if port is not None and port in self.database_ports:
            return ServiceDescriptor(
                self.database_ports[port],
                ServiceCategory.DATABASE,
                "🗄️",
                DetectedBy.PORT,
            )

        # 路径规则
        path = parsed.path.lower()
        if any(marker in path for marker in API_PATH_MARKERS):
            return ServiceDescriptor("API Server", ServiceCategory.API, "🔌", DetectedBy.PATH)

        return ServiceDescriptor(
            DEFAULT_SERVICE_NAME,
            ServiceCategory.SERVER,
            DEFAULT_SERVICE_ICON,
            DetectedBy.DEFAULT,
        )


def _explicit_port(parsed: SplitResult) -> int | None:
    try:
        return parsed.port
    except ValueError:
        return None


_default_classifier = ServiceClassifier()


def classify(url: SplitResult | str) -> ServiceDescriptor:
    """使用默认规则表识别服务"""
    return _default_classifier.classify(url)
