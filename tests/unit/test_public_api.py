import logging

import pytest

import span_labeler

pytestmark = pytest.mark.unit


def test_all_exports_resolve():
    missing = [name for name in span_labeler.__all__ if not hasattr(span_labeler, name)]
    assert missing == []


def test_library_logger_has_null_handler():
    handlers = logging.getLogger("span_labeler").handlers
    assert any(isinstance(handler, logging.NullHandler) for handler in handlers)


def test_version_is_a_string():
    assert isinstance(span_labeler.__version__, str)
