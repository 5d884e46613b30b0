from __future__ import annotations

import sys

import allure
import pytest

from assist_router.errors import ConfigValidationError
from assist_router.models import (
    DevserverTaskStatus,
    ProviderDescriptor,
    ProviderKind,
    ProviderResult,
    RunOptions,
    TokenUsage,
)
from assist_router.pricing import PER_1K, PER_1M, Pricing

pytestmark = [
    allure.epic("Provider Runtime"),
    allure.feature("Data Model"),
]


def test_descriptor_from_camel_case_mapping() -> None:
    descriptor = ProviderDescriptor.from_mapping(
        {
            "name": "deepseek",
            "type": "api",
            "baseUrl": "https://api.deepseek.com",
            "model": "deepseek-coder",
            "capabilities": ["review"],
            "pricing": {"inputPerMillion": 0.14, "outputPerMillion": 0.28},
            "rateLimits": {"requestsPerMinute": 100, "tokensPerMinute": 50_000},
            "ignoredKey": True,
        },
    )

    assert descriptor.kind is ProviderKind.REMOTE_API
    assert descriptor.base_url == "https://api.deepseek.com"
    assert descriptor.capabilities == frozenset({"review"})
    assert descriptor.pricing == Pricing(input=0.14, output=0.28, unit=PER_1M)
    assert descriptor.rate_limits.requests_per_minute == 100
    assert descriptor.window.limits.tokens_per_minute == 50_000


def test_descriptor_maps_headless_args_and_cli_kind() -> None:
    descriptor = ProviderDescriptor.from_mapping(
        {"name": "codex", "kind": "cli", "command": "codex", "headlessArgs": ["exec", "--json"]},
    )
    assert descriptor.kind is ProviderKind.LOCAL
    assert descriptor.args == ("exec", "--json")


def test_unknown_kind_is_kept_for_validation() -> None:
    descriptor = ProviderDescriptor(name="x", kind="ftp")
    assert descriptor.kind == "ftp"


def test_each_descriptor_owns_its_window() -> None:
    first = ProviderDescriptor(name="claude", kind="local", command="claude")
    second = ProviderDescriptor(name="claude", kind="local", command="claude")

    first.window.acquire(10)

    assert first == second
    assert first.window is not second.window
    assert second.window.requests_this_window == 0


def test_api_key_falls_back_to_environment(monkeypatch) -> None:
    monkeypatch.setenv("DEEP_SEEK_API_KEY", "sk-env")
    descriptor = ProviderDescriptor(name="deep-seek", kind="remoteApi", base_url="https://x")

    assert descriptor.env_api_key_name == "DEEP_SEEK_API_KEY"
    assert descriptor.resolve_api_key() == "sk-env"


def test_explicit_api_key_wins_over_environment(monkeypatch) -> None:
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-env")
    descriptor = ProviderDescriptor(
        name="deepseek",
        kind="remoteApi",
        base_url="https://x",
        api_key="sk-explicit",
    )
    assert descriptor.resolve_api_key() == "sk-explicit"
    assert "sk-explicit" not in repr(descriptor)


def test_successful_result_never_carries_error() -> None:
    result = ProviderResult(raw="ok", exit_code=0, error="stale")
    assert result.error is None
    assert result.warning == "stale"
    assert result.ok is True


def test_cost_requires_token_usage() -> None:
    assert ProviderResult(raw="", cost=0.5).cost is None
    assert ProviderResult(raw="", token_usage=TokenUsage(1, 1), cost=-1.0).cost == 0.0


def test_result_wire_shape_round_trips_from_devserver_payload() -> None:
    result = ProviderResult.from_mapping(
        {
            "raw": '{"done": true}',
            "parsed": {"done": True},
            "exitCode": 0,
            "tokenUsage": {"input": 10, "output": 5},
            "cost": 0.001,
        },
    )
    assert result.parsed == {"done": True}
    assert result.token_usage == TokenUsage(input=10, output=5)
    assert result.to_dict() == {
        "raw": '{"done": true}',
        "parsed": {"done": True},
        "exitCode": 0,
        "tokenUsage": {"input": 10, "output": 5},
        "cost": 0.001,
    }


def test_run_options_wire_payload_skips_unset_fields() -> None:
    options = RunOptions(sandbox="read-only", timeout_ms=5_000)
    assert options.to_wire() == {"sandbox": "read-only", "timeout": 5_000}


def test_devserver_terminal_states() -> None:
    assert not DevserverTaskStatus.QUEUED.is_terminal
    assert not DevserverTaskStatus.RUNNING.is_terminal
    assert DevserverTaskStatus.COMPLETED.is_terminal
    assert DevserverTaskStatus.FAILED.is_terminal
    assert DevserverTaskStatus.TIMEOUT.is_terminal


def test_remote_api_pricing_without_unit_is_per_thousand() -> None:
    descriptor = ProviderDescriptor.from_mapping(
        {
            "name": "deepseek",
            "kind": "remoteApi",
            "baseUrl": "https://api.deepseek.com",
            "pricing": {"input": 0.001, "output": 0.002},
        },
    )
    assert descriptor.pricing == Pricing(input=0.001, output=0.002, unit=PER_1K)


def test_local_pricing_without_unit_is_per_million() -> None:
    descriptor = ProviderDescriptor.from_mapping(
        {
            "name": "codex",
            "kind": "local",
            "command": "codex",
            "pricing": {"input": 10, "output": 40},
        },
    )
    assert descriptor.pricing == Pricing(input=10.0, output=40.0, unit=PER_1M)


def test_explicit_pricing_unit_wins_for_remote_api() -> None:
    descriptor = ProviderDescriptor.from_mapping(
        {
            "name": "openai",
            "kind": "api",
            "baseUrl": "https://api.openai.com",
            "pricing": {"input": 2.5, "output": 10, "unit": PER_1M},
        },
    )
    assert descriptor.pricing.unit == PER_1M


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"rateLimits": {"requestsPerMinute": "many"}}, "many"),
        ({"rateLimits": 100}, "rateLimits must be an object"),
        ({"pricing": 5}, "pricing must be an object"),
        ({"pricing": {"input": "cheap"}}, "cheap"),
        ({"headlessArgs": "-p"}, "not a single string"),
        ({"detected": "yes"}, "detected must be true or false"),
    ],
)
def test_malformed_mapping_values_are_config_errors(overrides: dict, message: str) -> None:
    raw = {"name": "claude", "kind": "local", "command": "claude", **overrides}

    with pytest.raises(ConfigValidationError, match=message):
        ProviderDescriptor.from_mapping(raw)


def test_string_args_are_not_split_into_characters() -> None:
    with pytest.raises(ConfigValidationError, match="not a single string"):
        ProviderDescriptor(name="claude", kind="local", command="claude", args="-p")


def test_detected_reflects_command_on_path() -> None:
    present = ProviderDescriptor(name="py", kind="local", command=sys.executable)
    missing = ProviderDescriptor(name="ghost", kind="local", command="ghost-cli-not-installed")

    assert present.detected is True
    assert missing.detected is False


def test_detected_can_be_supplied_explicitly() -> None:
    descriptor = ProviderDescriptor.from_mapping(
        {"name": "claude", "type": "cli", "command": "ghost-cli-not-installed", "detected": True},
    )
    assert descriptor.detected is True


def test_devserver_only_defaults_by_kind() -> None:
    api = ProviderDescriptor.from_mapping(
        {"name": "deepseek", "type": "api", "baseUrl": "https://api.deepseek.com"},
    )
    local = ProviderDescriptor(name="claude", kind="local", command="claude")
    direct = ProviderDescriptor.from_mapping(
        {
            "name": "mistral",
            "kind": "remoteApi",
            "baseUrl": "https://api.mistral.ai",
            "devserverOnly": False,
        },
    )

    assert api.devserver_only is True
    assert api.detected is False
    assert local.devserver_only is False
    assert direct.devserver_only is False
