from yubarta.app_container import AppContainer, get_container
from yubarta.config import Settings


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv('YUBARTA_API_URL', 'http://api.yubarta.co/api/')
    monkeypatch.setenv('YUBARTA_POLL_INTERVAL', '2.5')
    monkeypatch.setenv('YUBARTA_HTTP_TIMEOUT', 'rapido')
    monkeypatch.setenv('YUBARTA_DATA_DIR', str(tmp_path))

    settings = Settings.from_env()
    assert settings.api_url == 'http://api.yubarta.co/api'
    assert settings.poll_interval == 2.5
    assert settings.http_timeout == 10.0
    assert settings.data_dir == str(tmp_path)
    assert not settings.production


def test_container_reuses_instances(settings):
    container = AppContainer(settings)
    assert container.store is container.store
    assert container.marketplace_service.commitments is container.commitment_service
    assert container.sourcing_service.store is container.store
    assert set(container.json_repositories) == set(container.api_repositories)


def test_global_container(settings):
    AppContainer.reset_instance()
    try:
        assert get_container(settings) is get_container()
        assert get_container().settings is settings
    finally:
        AppContainer.reset_instance()
