import dataclasses
import enum
import functools
import itertools
import logging
import typing
from concurrent.futures import ThreadPoolExecutor

from .backtrack import BacktrackingRecognizer
from .compiled import CompiledRecognizer
from .grammar import Grammar, ResourceExhausted, parse
from .loops import add_loops, rewrite_with_bound
from .suffixes import SuffixSetRecognizer

runtime_log = logging.getLogger("msgrules.runtime")


class Strategy(enum.Enum):
    """Which recognizer to use."""

    BACKTRACK = "backtrack"
    SUFFIX = "suffix"
    COMPILED = "compiled"


class Recognizer(typing.Protocol):
    def matches(self, message: str) -> bool:
        """True if the whole message is derivable from rule 0."""
        ...


def make_recognizer(
    grammar: Grammar,
    strategy: Strategy = Strategy.SUFFIX,
    *,
    max_depth: int | None = None,
    max_calls: int | None = None,
    max_repeat: int | None = None,
) -> Recognizer:
    """Build the recognizer for the strategy. This validates the grammar, so
    a bad grammar is reported here, once, and not for every message.

    Only the compiled recognizer takes `max_repeat`; only the suffix-set
    recognizer takes `max_calls`. A limit the chosen recognizer can't enforce
    is logged and ignored.
    """
    ignored: list[typing.Tuple[str, int | None]] = []
    match strategy:
        case Strategy.BACKTRACK:
            recognizer: Recognizer = BacktrackingRecognizer(grammar, max_depth=max_depth)
            ignored = [("max_calls", max_calls), ("max_repeat", max_repeat)]
        case Strategy.SUFFIX:
            recognizer = SuffixSetRecognizer(grammar, max_depth=max_depth, max_calls=max_calls)
            ignored = [("max_repeat", max_repeat)]
        case Strategy.COMPILED:
            recognizer = CompiledRecognizer(grammar, max_repeat=max_repeat)
            ignored = [("max_depth", max_depth), ("max_calls", max_calls)]
        case _:
            typing.assert_never(strategy)

    for name, value in ignored:
        if value is not None:
            runtime_log.warning(
                "The %s recognizer has no %s limit; ignoring %s=%d",
                strategy.value,
                name,
                name,
                value,
            )
    return recognizer


@dataclasses.dataclass
class BatchResult:
    messages: list[str]
    verdicts: list[bool]
    # Indices of the messages that hit a search limit. They count as not
    # matching.
    exhausted: list[int]

    @property
    def count(self) -> int:
        return sum(1 for verdict in self.verdicts if verdict)

    def matched(self) -> list[str]:
        return [m for m, verdict in zip(self.messages, self.verdicts) if verdict]


def _check_one(recognizer: Recognizer, index: int, message: str) -> typing.Tuple[bool, bool]:
    try:
        return recognizer.matches(message), False
    except ResourceExhausted as e:
        runtime_log.warning("Message %d: %s; counting it as no match", index, e)
        return False, True


def check_messages(
    recognizer: Recognizer,
    messages: typing.Sequence[str],
    *,
    jobs: int = 1,
) -> BatchResult:
    """Run every message through the recognizer.

    The messages have nothing to do with each other and the recognizer
    doesn't change while it works, so with `jobs > 1` they are spread over a
    thread pool. The verdicts come back in the same order as the messages
    either way.
    """
    check = functools.partial(_check_one, recognizer)
    if jobs > 1:
        with ThreadPoolExecutor(max_workers=jobs) as executor:
            results = list(executor.map(check, itertools.count(), messages))
    else:
        results = [check(index, message) for index, message in enumerate(messages)]

    result = BatchResult(
        messages=list(messages),
        verdicts=[verdict for verdict, _ in results],
        exhausted=[index for index, (_, exhausted) in enumerate(results) if exhausted],
    )
    runtime_log.info(
        "%d of %d messages match (%d ran out of room)",
        result.count,
        len(result.messages),
        len(result.exhausted),
    )
    return result


def count_matches(
    grammar: Grammar,
    messages: typing.Sequence[str],
    *,
    loops: bool = False,
    strategy: Strategy = Strategy.SUFFIX,
    max_repeat: int | None = None,
    max_depth: int | None = None,
    max_calls: int | None = None,
    jobs: int = 1,
) -> int:
    """Count the messages that match rule 0 of an already parsed grammar.

    With `loops`, rules 8 and 11 are swapped for their looping versions
    first. With `max_repeat`, self-referential rules nest at most that deep:
    the compiled recognizer caps its repeats while it matches, and for the
    other two the grammar is unrolled first.
    """
    if loops:
        grammar = add_loops(grammar)
    if max_repeat is not None and strategy is not Strategy.COMPILED:
        grammar = rewrite_with_bound(grammar, max_repeat)
        max_repeat = None

    recognizer = make_recognizer(
        grammar,
        strategy,
        max_depth=max_depth,
        max_calls=max_calls,
        max_repeat=max_repeat,
    )
    return check_messages(recognizer, messages, jobs=jobs).count


def count_valid_messages(
    text: str,
    *,
    loops: bool = False,
    strategy: Strategy = Strategy.SUFFIX,
    max_repeat: int | None = None,
    max_depth: int | None = None,
    max_calls: int | None = None,
    jobs: int = 1,
) -> int:
    """Parse the puzzle text and count the messages that match rule 0. The
    options are the same as for `count_matches`.
    """
    grammar, messages = parse(text)
    return count_matches(
        grammar,
        messages,
        loops=loops,
        strategy=strategy,
        max_repeat=max_repeat,
        max_depth=max_depth,
        max_calls=max_calls,
        jobs=jobs,
    )
