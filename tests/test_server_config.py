import pytest

from rodnya.cmd.server import load_config
from rodnya.server.runtime import DEFAULTS, ServerRuntime


def test_load_yaml_config(tmp_path):
    path = tmp_path / "server.yaml"
    path.write_text("listen: '127.0.0.1:4000'\nhistory_limit: 20\nstrict_errors: false\n")
    cfg = load_config(path, environ={})
    assert cfg == {"listen": "127.0.0.1:4000", "history_limit": 20, "strict_errors": False}


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "server.yaml"
    path.write_text("listen: '127.0.0.1:4000'\ndb_path: a.db\n")
    cfg = load_config(path, environ={"RODNYA_LISTEN": "0.0.0.0:5000", "RODNYA_DB_PATH": ""})
    assert cfg["listen"] == "0.0.0.0:5000"
    assert cfg["db_path"] == "a.db"


def test_empty_and_missing_config(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(path, environ={}) == {}
    assert load_config(None, environ={"RODNYA_DB_PATH": "x.db"}) == {"db_path": "x.db"}


def test_non_mapping_config_rejected(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(SystemExit):
        load_config(path, environ={})


def test_runtime_applies_defaults():
    runtime = ServerRuntime({"listen": "127.0.0.1:0", "history_limit": "5"})
    assert (runtime.listen_host, runtime.listen_port) == ("127.0.0.1", 0)
    assert runtime.history_limit == 5
    assert runtime.db_path == DEFAULTS["db_path"]
    assert runtime.strict_errors is True
    assert runtime.max_frame_bytes == 1024 * 1024
