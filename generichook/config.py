from typing import Any, Mapping, Optional

from yarl import URL
import attr

DEFAULT_URL_PREFIX = "http://localhost:9000/webhook/"


@attr.dataclass(frozen=True)
class GenericWebhooksConfig:
    enabled: bool = True
    allow_js_transformation_functions: bool = False
    user_id_prefix: Optional[str] = None
    url_prefix: str = DEFAULT_URL_PREFIX

    @property
    def parsed_url_prefix(self) -> URL:
        # Without the trailing slash the last path segment would be replaced on join
        prefix = self.url_prefix if self.url_prefix.endswith("/") else f"{self.url_prefix}/"
        return URL(prefix)

    def hook_url(self, hook_id: str) -> URL:
        return self.parsed_url_prefix.join(URL(hook_id))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GenericWebhooksConfig":
        return cls(
            enabled=bool(data.get("enabled", True)),
            allow_js_transformation_functions=bool(data.get("allow_js_transformation_functions", False)),
            user_id_prefix=data.get("user_id_prefix") or None,
            url_prefix=str(data.get("url_prefix") or DEFAULT_URL_PREFIX),
        )
