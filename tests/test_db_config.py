import pytest

import db_config
from db_config import ConfigError, PollerConfig


def test_defaults():
    config = PollerConfig().validate()

    assert config.poll_interval == 10
    assert config.initial_delay == 0
    assert config.application_name == db_config.DEFAULT_APPNAME


def test_appname_and_query_are_mutually_exclusive():
    with pytest.raises(ConfigError, match="both appname and query"):
        PollerConfig(client_selector="pg_receivewal", custom_query="SELECT 1, 2").validate()


@pytest.mark.parametrize("field", ["poll_interval", "initial_delay"])
@pytest.mark.parametrize("value", [-1, "5", 1.5, True])
def test_intervals_must_be_non_negative_integers(field, value):
    with pytest.raises(ConfigError):
        PollerConfig(**{field: value}).validate()


def test_status_query_by_server_version():
    config = PollerConfig(client_selector="archiver")

    assert config.status_query(160002) == (db_config.STATUS_QUERY, ("archiver",))
    assert config.status_query(90624) == (db_config.LEGACY_STATUS_QUERY, ("archiver",))


def test_custom_query_is_passed_through():
    config = PollerConfig(custom_query="SELECT pos, file FROM archive_status")

    assert config.status_query(160002) == ("SELECT pos, file FROM archive_status", None)
