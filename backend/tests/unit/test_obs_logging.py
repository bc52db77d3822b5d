import json
import logging

from hexchat.obs import logging as obs_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("hexchat.test", logging.INFO, __file__, 1, "sent %s", ("msg",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_json_with_context():
    tokens = obs_logging.bind_context(room_id="district_x", user_id="u1", scale="DISTRICT")
    try:
        payload = json.loads(obs_logging.JSONLogFormatter().format(_record()))
    finally:
        obs_logging.reset_context(tokens)
    assert payload["msg"] == "sent msg"
    assert payload["room_id"] == "district_x"
    assert payload["user_id"] == "u1"
    assert payload["scale"] == "DISTRICT"


def test_coordinates_and_bodies_are_redacted():
    record = _record(lat=39.9, lng=116.4, content="private text", room="city_x")
    payload = json.loads(obs_logging.JSONLogFormatter().format(record))
    assert payload["lat"] == "[redacted]"
    assert payload["lng"] == "[redacted]"
    assert payload["content"] == "[redacted]"
    assert payload["room"] == "city_x"


def test_context_is_reset():
    tokens = obs_logging.bind_context(room_id="r")
    obs_logging.reset_context(tokens)
    payload = json.loads(obs_logging.JSONLogFormatter().format(_record()))
    assert "room_id" not in payload


def test_init_installs_json_handler_once(monkeypatch):
    from hexchat import obs

    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    monkeypatch.setattr(obs, "_initialised", False)
    try:
        obs.init()
        obs.init()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, obs_logging.JSONLogFormatter)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_info_sampling_keeps_warnings(monkeypatch):
    monkeypatch.setattr(obs_logging.settings, "obs_log_sampling_rate_info", 0.0)
    sampler = obs_logging.InfoSamplingFilter()
    assert sampler.filter(_record()) is False
    warning = logging.LogRecord("hexchat.test", logging.WARNING, __file__, 1, "careful", (), None)
    assert sampler.filter(warning) is True
