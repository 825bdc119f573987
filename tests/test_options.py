import argparse

from imagor.options import apply_options


class FakeApp:
    pass


def run(options):
    app = FakeApp()
    for option in options:
        option(app)


def test_apply_options():
    fs = argparse.ArgumentParser()
    nop_logger = object()
    seq = []
    seen = []

    def root():
        seq.append(4)
        return nop_logger, True

    def make(before, after, applied):
        def option(fs, cb):
            seq.append(before)
            seen.append(cb())
            seq.append(after)
            return lambda app: seq.append(applied)
        return option

    options, logger, is_debug = apply_options(
        fs, root, make(3, 5, 8), make(2, 6, 9), make(1, 7, 10)
    )
    run(options)
    assert logger is nop_logger
    assert is_debug is True
    assert seen == [(nop_logger, True)] * 3
    assert seq == [1, 2, 3, 4, 5, 6, 7, 8, 9, 10]


def test_apply_options_nil():
    fs = argparse.ArgumentParser()
    nop_logger = object()
    seq = []
    seen = []

    def root():
        seq.append(4)
        return nop_logger, True

    def opt3(fs, cb):
        seq.append(3)
        seen.append(cb())
        seq.append(5)
        return lambda app: seq.append(7)

    def opt2(fs, cb):
        seq.append(2)
        return lambda app: seq.append(8)

    def opt1(fs, cb):
        seq.append(1)
        seen.append(cb())
        seq.append(6)
        return lambda app: seq.append(9)

    options, logger, is_debug = apply_options(fs, root, opt3, None, opt2, None, opt1)
    run(options)
    assert logger is nop_logger
    assert is_debug is True
    assert seen == [(nop_logger, True)] * 2
    assert seq == [1, 2, 3, 4, 5, 6, 7, 8, 9]


def test_apply_no_options():
    options, logger, is_debug = apply_options(None, lambda: ("log", False))
    assert options == []
    assert logger == "log"
    assert is_debug is False