from timeline_ai.llm.credentials import CachedCredentials, EnvCredentialSource
from timeline_ai.llm.schemas import ProviderKind

from tests.fakes import StaticCredentials


def test_env_source_reads_provider_variables(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("DEEPSEEK_API_KEY", "   ")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    source = EnvCredentialSource()

    assert source.get_credential(ProviderKind.OPENAI) == "sk-env"
    assert source.get_credential(ProviderKind.DEEPSEEK) is None
    assert source.get_credential(ProviderKind.CLAUDE) is None
    assert source.get_credential(ProviderKind.OLLAMA) is None


def test_cached_credentials_fetch_once():
    source = StaticCredentials({"openai": "sk-1"})
    credentials = CachedCredentials(source)

    assert credentials.get_credential(ProviderKind.OPENAI) == "sk-1"
    assert credentials.get_credential(ProviderKind.OPENAI) == "sk-1"
    assert source.lookups == [ProviderKind.OPENAI]


def test_missing_credentials_are_not_cached():
    source = StaticCredentials()
    credentials = CachedCredentials(source)

    assert credentials.get_credential(ProviderKind.CLAUDE) is None
    source.secrets["claude"] = "sk-ant-late"
    assert credentials.get_credential(ProviderKind.CLAUDE) == "sk-ant-late"


def test_update_and_invalidate():
    source = StaticCredentials({"openai": "sk-1"})
    credentials = CachedCredentials(source)
    credentials.get_credential(ProviderKind.OPENAI)

    credentials.update_cache(ProviderKind.OPENAI, "sk-2")
    assert credentials.get_credential(ProviderKind.OPENAI) == "sk-2"

    credentials.invalidate(ProviderKind.OPENAI)
    assert credentials.get_credential(ProviderKind.OPENAI) == "sk-1"
    assert len(source.lookups) == 2
