from __future__ import annotations

import logging

import pytest

from faceid.utils.log import ROOT_LOGGER, get_logger, set_level


@pytest.fixture
def restore_levels():
    names = (ROOT_LOGGER, "face_recognizer")
    saved = {n: logging.getLogger(n).level for n in names}
    yield
    for n, level in saved.items():
        logging.getLogger(n).setLevel(level)


def test_set_level_accepts_names_and_numbers(restore_levels):
    assert set_level("debug") == logging.DEBUG
    assert get_logger("faceid.face.matcher").isEnabledFor(logging.DEBUG)
    assert get_logger("face_recognizer").isEnabledFor(logging.DEBUG)

    assert set_level(logging.WARNING) == logging.WARNING
    assert not get_logger("faceid.face.matcher").isEnabledFor(logging.INFO)


def test_set_level_rejects_unknown_name(restore_levels):
    with pytest.raises(ValueError):
        set_level("chatty")


def test_script_logger_shares_the_cli_name():
    assert get_logger("__main__").name == "face_recognizer"


class _Stop(Exception):
    pass


def _no_recognizer(**kwargs):
    raise _Stop()


def test_cli_verbose_enables_debug(restore_levels, monkeypatch: pytest.MonkeyPatch):
    import face_recognizer

    monkeypatch.setattr(face_recognizer, "FaceRecognizer", _no_recognizer)
    with pytest.raises(_Stop):
        face_recognizer.main(["x.png", "-g", "g.json", "-m", "m.pt", "--no-detect", "-v"])
    assert logging.getLogger(ROOT_LOGGER).level == logging.DEBUG
