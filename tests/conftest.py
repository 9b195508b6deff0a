"""Pytest configuration and fixtures."""
import pytest

from config.settings import AIConfig, FeatureFlags, PromptConfig, ScanConfig
from tests.fakes import CharEncoding, FakeArchive, FakeLedger, FakeProvider


@pytest.fixture
def encoding():
    return CharEncoding()


@pytest.fixture
def ai_settings():
    return AIConfig(
        provider="openai",
        openai_api_key="test-openai-key",
        openai_model="gpt-4o-mini",
        openai_base_url="https://api.openai.com/v1",
    )


@pytest.fixture
def prompt_settings():
    return PromptConfig(system_prompt="", use_prompt_tags=False, prompt_tags=[], custom_fields=[])


@pytest.fixture
def flags():
    return FeatureFlags(
        tagging=True, correspondents=True, document_type=True, title=True,
        custom_fields=True, add_ai_processed_tag=False, ai_processed_tag_name="ai-processed",
    )


@pytest.fixture
def scan_settings():
    return ScanConfig(
        interval="*/30 * * * *", run_on_startup=False,
        process_predefined_documents=False, tags=[],
        content_max_length=50_000, min_content_length=10, webhook_queue_size=3,
    )


@pytest.fixture
def archive():
    return FakeArchive()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def provider():
    return FakeProvider()
