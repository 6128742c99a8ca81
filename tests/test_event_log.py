import logging

from form_agent.event_log import format_event, log_event, setup_logging


def test_format_event_keeps_field_order_and_quotes_spaces():
    line = format_event("EVT-FND-01", {"label": "Number of instances", "strategy": "aria-label"})
    assert line == 'EVT-FND-01 label="Number of instances" strategy=aria-label'


def test_format_event_renders_collections_as_json():
    line = format_event("EVT-RES-02", {"count": 2, "dimensions": ["G.S.a", "G.S.b"], "empty": ""})
    assert line == 'EVT-RES-02 count=2 dimensions=["G.S.a", "G.S.b"] empty=""'


def test_log_event_maps_warn_level(caplog):
    logger = logging.getLogger("event_log_test")
    with caplog.at_level(logging.DEBUG, logger="event_log_test"):
        log_event(logger, "WARN", "EVT-RTY-01", step="fill-qty", attempt=1)

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.getMessage() == "EVT-RTY-01 step=fill-qty attempt=1"


def test_setup_logging_creates_log_directory(tmp_path):
    log_file = tmp_path / "nested" / "agent.log"
    root = logging.getLogger()
    saved = root.handlers[:]

    try:
        path = setup_logging({"paths": {"log_file": str(log_file)}})
        logging.getLogger("event_log_test").info("hello")
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers = saved

    assert path == str(log_file)
    assert log_file.parent.is_dir()
