from __future__ import annotations

import logging

from proxy_reconfigurer.utils.diagnostics import PlatformQueryError
from proxy_reconfigurer.utils.logging import ExtraFormatter


def _record(**extra) -> logging.LogRecord:
    return logging.getLogger("proxy_reconfigurer.tests").makeRecord(
        "proxy_reconfigurer.tests", logging.INFO, __file__, 1, "rebuild_failed", (), None, extra=extra
    )


def test_extras_are_appended_as_key_value_pairs():
    diagnostic = PlatformQueryError("PlatformUnreachable", "API down", "timeout")

    line = ExtraFormatter("%(message)s").format(_record(reason="startup", **diagnostic.to_extra()))

    assert line == "rebuild_failed reason=startup code=PlatformUnreachable summary=API down detail=timeout"


def test_plain_records_are_left_untouched():
    assert ExtraFormatter("%(message)s").format(_record()) == "rebuild_failed"
