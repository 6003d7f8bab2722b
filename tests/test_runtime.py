import io
import logging

import pytest

from msgrules.cli import main
from msgrules.compiled import CompiledRecognizer
from msgrules.grammar import Alternatives, Grammar, Terminal, parse
from msgrules.loops import add_loops
from msgrules.runtime import (
    Strategy,
    check_messages,
    count_matches,
    count_valid_messages,
    make_recognizer,
)
from msgrules.suffixes import SuffixSetRecognizer

from samples import (
    LOOPING,
    LOOPING_MATCHES_WITHOUT_LOOPS,
    SIMPLE,
)


def test_check_messages_keeps_order():
    grammar, messages = parse(SIMPLE)
    result = check_messages(make_recognizer(grammar), messages)

    assert result.messages == messages
    assert result.verdicts == [True, False, True, False, False]
    assert result.count == 2
    assert result.matched() == ["ababbb", "abbbab"]
    assert result.exhausted == []


def test_check_messages_counts_exhausted_as_no_match(caplog):
    grammar, _ = parse(SIMPLE)
    # "ab" is too short for rule 0 to even start, so it costs nothing. The
    # other one needs more than one step.
    recognizer = SuffixSetRecognizer(grammar, max_calls=1)

    with caplog.at_level(logging.WARNING, logger="msgrules.runtime"):
        result = check_messages(recognizer, ["ab", "ababbb"])

    assert result.verdicts == [False, False]
    assert result.exhausted == [1]
    assert result.count == 0
    assert "Message 1" in caplog.text


@pytest.mark.parametrize("strategy", list(Strategy))
def test_check_messages_in_parallel(strategy):
    grammar, messages = parse(LOOPING)
    recognizer = make_recognizer(grammar, strategy)

    serial = check_messages(recognizer, messages)
    parallel = check_messages(recognizer, messages, jobs=4)

    assert parallel.verdicts == serial.verdicts
    assert parallel.matched() == LOOPING_MATCHES_WITHOUT_LOOPS


def test_shared_compiled_recognizer_in_parallel():
    """The repeat levels get built on demand, possibly by several threads at
    once; the answers must not depend on who got there first."""
    grammar, messages = parse(LOOPING)
    looped = add_loops(grammar)

    expected = check_messages(SuffixSetRecognizer(looped), messages).verdicts
    for _ in range(3):
        recognizer = CompiledRecognizer(looped)
        assert check_messages(recognizer, messages * 4, jobs=8).verdicts == expected * 4


def test_make_recognizer_picks_the_strategy():
    grammar, _ = parse(SIMPLE)
    assert isinstance(make_recognizer(grammar, Strategy.SUFFIX), SuffixSetRecognizer)
    assert isinstance(make_recognizer(grammar, Strategy.COMPILED), CompiledRecognizer)


def test_count_simple():
    assert count_valid_messages(SIMPLE) == 2


@pytest.mark.parametrize("strategy", list(Strategy))
def test_count_without_loops(strategy):
    assert count_valid_messages(LOOPING, strategy=strategy) == 3


@pytest.mark.parametrize("strategy", [Strategy.SUFFIX, Strategy.COMPILED])
def test_count_with_loops(strategy):
    assert count_valid_messages(LOOPING, loops=True, strategy=strategy) == 12


def test_count_with_bounded_loops():
    assert count_valid_messages(LOOPING, loops=True, max_repeat=8) == 12
    # One level is the same as no loops at all.
    assert count_valid_messages(LOOPING, loops=True, max_repeat=1) == 3


def test_count_in_parallel():
    assert count_valid_messages(LOOPING, loops=True, jobs=3) == 12


def test_long_messages_are_not_exhausted():
    grammar = Grammar(
        {
            0: Alternatives.of([8]),
            8: Alternatives.of([42], [42, 8]),
            42: Terminal("a"),
        }
    )
    messages = ["a" * 400, "a" * 1500, "a" * 1500 + "b"]
    result = check_messages(make_recognizer(grammar), messages)

    assert result.verdicts == [True, True, False]
    assert result.exhausted == []


def test_compiled_takes_max_repeat():
    grammar, _ = parse(LOOPING)
    recognizer = make_recognizer(grammar, Strategy.COMPILED, max_repeat=3)
    assert isinstance(recognizer, CompiledRecognizer)
    assert recognizer.max_repeat == 3


def test_ignored_limits_are_logged(caplog):
    grammar, _ = parse(SIMPLE)
    with caplog.at_level(logging.WARNING, logger="msgrules.runtime"):
        make_recognizer(grammar, Strategy.COMPILED, max_depth=5, max_calls=10)

    assert "ignoring max_depth=5" in caplog.text
    assert "ignoring max_calls=10" in caplog.text


@pytest.mark.parametrize("strategy", [Strategy.SUFFIX, Strategy.COMPILED])
def test_count_with_repeat_cap(strategy):
    assert count_valid_messages(LOOPING, loops=True, strategy=strategy, max_repeat=1) == 3
    assert count_valid_messages(LOOPING, loops=True, strategy=strategy, max_repeat=8) == 12


def test_count_matches_on_a_parsed_grammar():
    grammar, messages = parse(LOOPING)
    assert count_matches(grammar, messages) == 3
    assert count_matches(grammar, messages, loops=True) == 12
    # The grammar passed in keeps its own rules.
    assert count_matches(grammar, messages) == 3


###############################################################################
# Command line
###############################################################################


@pytest.fixture
def looping_file(tmp_path):
    path = tmp_path / "input.txt"
    path.write_text(LOOPING)
    return str(path)


def test_main_prints_both_parts(looping_file, capsys):
    assert main(["msgrules", looping_file]) == 0
    assert capsys.readouterr().out == "3\n12\n"


def test_main_part_one(looping_file, capsys):
    assert main(["msgrules", looping_file, "--part", "1"]) == 0
    assert capsys.readouterr().out == "3\n"


def test_main_loops_compiled(looping_file, capsys):
    assert main(["msgrules", looping_file, "--loops", "--strategy", "compiled"]) == 0
    assert capsys.readouterr().out == "12\n"


def test_main_with_jobs_and_bound(looping_file, capsys):
    assert main(["msgrules", looping_file, "--part", "2", "--max-repeat", "8", "--jobs", "2"]) == 0
    assert capsys.readouterr().out == "12\n"


def test_main_reads_stdin(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO(SIMPLE))
    assert main(["msgrules", "-", "--part", "1"]) == 0
    assert capsys.readouterr().out == "2\n"


def test_main_reports_bad_grammar(tmp_path, capsys):
    path = tmp_path / "bad.txt"
    path.write_text('0: 1 2\n1: "a"\n\nab\n')

    assert main(["msgrules", str(path)]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "error" in captured.err


@pytest.mark.parametrize("flag", [["--max-repeat", "0"], ["--jobs", "0"]])
def test_main_rejects_bad_limits(looping_file, flag):
    with pytest.raises(SystemExit) as exc:
        main(["msgrules", looping_file] + flag)
    assert exc.value.code == 2


def test_main_part_and_loops_conflict(looping_file):
    with pytest.raises(SystemExit):
        main(["msgrules", looping_file, "--part", "1", "--loops"])


def test_main_parses_the_input_once(looping_file, capsys, monkeypatch):
    calls = []

    def counting_parse(text):
        calls.append(text)
        return parse(text)

    monkeypatch.setattr("msgrules.cli.parse", counting_parse)
    assert main(["msgrules", looping_file, "--part", "both"]) == 0
    assert capsys.readouterr().out == "3\n12\n"
    assert len(calls) == 1
