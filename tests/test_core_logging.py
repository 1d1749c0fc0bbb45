import json
import logging

from core.logging_utils import LOG_FILE_NAME, configure_json_logging


def test_json_log_lines_carry_extra_fields(tmp_path) -> None:
    logger = configure_json_logging("slidesync.test_logging", working_dir=tmp_path)
    try:
        # A second call must not attach a second handler.
        configure_json_logging("slidesync.test_logging", working_dir=tmp_path)
        logger.info("matched %d frames", 12, extra={"video_hash": "abc"})
        logger.info("no extras")
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)

    lines = (tmp_path / "logs" / LOG_FILE_NAME).read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines]
    assert [record["message"] for record in records] == ["matched 12 frames", "no extras"]
    assert records[0]["video_hash"] == "abc"
    assert records[0]["level"] == "INFO"
    assert "video_hash" not in records[1]
    assert logging.getLogger("slidesync.test_logging").handlers == []
