"""Tests for the generic webhook settings."""

from generichook.config import DEFAULT_URL_PREFIX, GenericWebhooksConfig


def test_hook_url_with_trailing_slash():
    config = GenericWebhooksConfig(url_prefix="https://hooks.example.com/webhook/")
    assert str(config.hook_url("abc")) == "https://hooks.example.com/webhook/abc"


def test_hook_url_without_trailing_slash():
    config = GenericWebhooksConfig(url_prefix="https://hooks.example.com/webhook")
    assert str(config.hook_url("abc")) == "https://hooks.example.com/webhook/abc"


def test_from_mapping_defaults():
    config = GenericWebhooksConfig.from_mapping({})
    assert config.enabled is True
    assert config.allow_js_transformation_functions is False
    assert config.user_id_prefix is None
    assert config.url_prefix == DEFAULT_URL_PREFIX


def test_from_mapping_values():
    config = GenericWebhooksConfig.from_mapping({
        "enabled": False,
        "allow_js_transformation_functions": True,
        "user_id_prefix": "webhook_",
        "url_prefix": "https://x.example/hook/",
    })
    assert config == GenericWebhooksConfig(
        enabled=False,
        allow_js_transformation_functions=True,
        user_id_prefix="webhook_",
        url_prefix="https://x.example/hook/",
    )


def test_empty_prefix_is_none():
    assert GenericWebhooksConfig.from_mapping({"user_id_prefix": ""}).user_id_prefix is None
