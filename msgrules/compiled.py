"""Compile a grammar into a tree of matcher objects, once, ahead of time.

Each rule becomes a `Matcher`: something that knows the length of the
shortest string it can match, and that can produce every position where a
match starting at some position could end. Matchers compose with `seq` and
`alt` the same way rules do, and because they return *all* the end positions
(not just the first one) they are as exact as the suffix-set recognizer.

Every rule is compiled exactly once. If ten rules refer to rule 42, all ten
hold the very same matcher object for it. When a reference goes around a
cycle (the rule we need is still being built) we hand out a `Ref` instead,
which looks the rule up in the table when it is actually used.

Rules that loop on themselves in the simple way, like

    8: 42 | 42 8
    11: 42 31 | 42 11 31

get special treatment. For nesting level n we build a concrete, finite
matcher: level 1 is the non-looping alternatives, and level n is the looping
alternatives with level n-1 in place of the self-reference. So level 3 of
rule 11 is exactly `42 42 42 31 31 31`. We try levels 1, 2, 3, ... and stop
as soon as the shortest thing a level can match is longer than the text we
have left, which is a hard bound, not a guess: the levels only get longer.
Levels are built on first use and then kept.
"""

import abc
import logging
import math
import sys
import threading
import typing

from .grammar import (
    ROOT,
    Alternatives,
    Grammar,
    ResourceExhausted,
    Terminal,
    shortest_lengths,
    validate,
)

compile_log = logging.getLogger("msgrules.compiled")


###############################################################################
# Matchers
###############################################################################
class Matcher(abc.ABC):
    # math.inf for matchers that can't match anything at all.
    shortest: int | float

    @abc.abstractmethod
    def match(self, text: str, start: int) -> set[int]:
        """Every position where a match of this starting at `start` can end."""
        raise NotImplementedError()

    def fits(self, text: str, start: int) -> bool:
        return start + self.shortest <= len(text)


class Char(Matcher):
    def __init__(self, char: str):
        self.char = char
        self.shortest = 1

    def match(self, text: str, start: int) -> set[int]:
        if start < len(text) and text[start] == self.char:
            return {start + 1}
        return set()

    def __repr__(self) -> str:
        return f"Char({self.char!r})"


class NothingMatcher(Matcher):
    """Matches no input, ever. Use the `Nothing` singleton."""

    def __init__(self):
        self.shortest = math.inf

    def match(self, text: str, start: int) -> set[int]:
        del text
        del start
        return set()

    def __repr__(self) -> str:
        return "Nothing"


Nothing = NothingMatcher()


class Seq(Matcher):
    parts: typing.Tuple[Matcher, ...]

    def __init__(self, parts: typing.Iterable[Matcher]):
        self.parts = tuple(parts)
        self.shortest = sum(part.shortest for part in self.parts)

    def match(self, text: str, start: int) -> set[int]:
        if not self.fits(text, start):
            return set()

        positions = {start}
        # How much the parts we haven't matched yet still need.
        still_needed = self.shortest
        for part in self.parts:
            still_needed -= part.shortest
            limit = len(text) - still_needed

            next_positions: set[int] = set()
            for position in positions:
                for end in part.match(text, position):
                    if end <= limit:
                        next_positions.add(end)

            positions = next_positions
            if len(positions) == 0:
                break

        return positions

    def __repr__(self) -> str:
        return f"Seq({list(self.parts)!r})"


class Alt(Matcher):
    options: typing.Tuple[Matcher, ...]

    def __init__(self, options: typing.Iterable[Matcher]):
        self.options = tuple(options)
        self.shortest = min((option.shortest for option in self.options), default=math.inf)

    def match(self, text: str, start: int) -> set[int]:
        result: set[int] = set()
        for option in self.options:
            if option.fits(text, start):
                result.update(option.match(text, start))
        return result

    def __repr__(self) -> str:
        return f"Alt({list(self.options)!r})"


class Ref(Matcher):
    """A rule referenced by id, looked up in the table when it is used."""

    def __init__(self, table: dict[int, Matcher], rule_id: int, shortest: int | float):
        self.table = table
        self.rule_id = rule_id
        self.shortest = shortest

    def match(self, text: str, start: int) -> set[int]:
        return self.table[self.rule_id].match(text, start)

    def __repr__(self) -> str:
        return f"Ref({self.rule_id})"


class Repeat(Matcher):
    """A rule of the form `r: B | P r S`, matched one nesting level at a time.

    `base` is B; `loops` is the list of (P, S) pairs, one for each looping
    alternative, with the self-reference cut out.
    """

    rule_id: int
    loops: list[typing.Tuple[list[Matcher], list[Matcher]]]
    max_repeat: int | None
    _levels: list[Matcher]

    def __init__(
        self,
        rule_id: int,
        base: Matcher,
        loops: list[typing.Tuple[list[Matcher], list[Matcher]]],
        max_repeat: int | None = None,
    ):
        self.rule_id = rule_id
        self.loops = loops
        self.max_repeat = max_repeat
        self.shortest = base.shortest
        self._levels = [base]
        self._lock = threading.Lock()

    def level(self, n: int) -> Matcher:
        """The matcher for exactly `n` levels of nesting."""
        with self._lock:
            while len(self._levels) < n:
                inner = self._levels[-1]
                self._levels.append(
                    alt(*(seq(*prefix, inner, *suffix) for prefix, suffix in self.loops))
                )
                compile_log.debug("Built level %d of rule %d", len(self._levels), self.rule_id)
            return self._levels[n - 1]

    def match(self, text: str, start: int) -> set[int]:
        ends: set[int] = set()
        n = 1
        while self.max_repeat is None or n <= self.max_repeat:
            level = self.level(n)
            if not level.fits(text, start):
                break
            ends.update(level.match(text, start))
            n += 1
        return ends

    def __repr__(self) -> str:
        return f"Repeat({self.rule_id})"


def seq(*parts: Matcher) -> Matcher:
    """A sequence of the parts. Sequences inside sequences get spliced in, so
    that level n of `8: 42 | 42 8` is one flat run of n 42s and matching it
    doesn't nest n calls deep.
    """
    flat: list[Matcher] = []
    for part in parts:
        if isinstance(part, Seq):
            flat.extend(part.parts)
        else:
            flat.append(part)

    if len(flat) == 1:
        return flat[0]
    return Seq(flat)


def alt(*options: Matcher) -> Matcher:
    if len(options) == 0:
        return Nothing
    if len(options) == 1:
        return options[0]
    return Alt(options)


###############################################################################
# The compiler
###############################################################################
class CompiledRecognizer:
    grammar: Grammar
    shortest: dict[int, int]
    max_repeat: int | None
    matchers: dict[int, Matcher]
    _building: set[int]

    def __init__(self, grammar: Grammar, *, max_repeat: int | None = None):
        validate(grammar)
        self.grammar = grammar
        self.shortest = shortest_lengths(grammar)
        self.max_repeat = max_repeat
        self.matchers = {}
        self._building = set()

        for rule_id in sorted(grammar):
            self.matcher(rule_id)

        compile_log.info(
            "Compiled %d rules, %d of them repeating",
            len(self.matchers),
            sum(1 for m in self.matchers.values() if isinstance(m, Repeat)),
        )

    def matcher(self, rule_id: int) -> Matcher:
        """The shared matcher for `rule_id`, building it if this is the first
        time anybody asked.
        """
        existing = self.matchers.get(rule_id)
        if existing is not None:
            return existing

        if rule_id in self._building:
            return Ref(self.matchers, rule_id, self.shortest.get(rule_id, math.inf))

        self._building.add(rule_id)
        try:
            result = self._build(rule_id)
        finally:
            self._building.discard(rule_id)

        self.matchers[rule_id] = result
        return result

    def _sequence(self, sequence: typing.Sequence[int]) -> Matcher:
        return seq(*(self.matcher(reference) for reference in sequence))

    def _build(self, rule_id: int) -> Matcher:
        rule = self.grammar[rule_id]
        match rule:
            case Terminal(char=c):
                return Char(c)

            case Alternatives(sequences=sequences):
                looping = [s for s in sequences if rule_id in s]
                if len(looping) > 0 and all(s.count(rule_id) == 1 for s in looping):
                    base = alt(*(self._sequence(s) for s in sequences if rule_id not in s))
                    loops = []
                    for s in looping:
                        index = s.index(rule_id)
                        loops.append(
                            (
                                [self.matcher(r) for r in s[:index]],
                                [self.matcher(r) for r in s[index + 1 :]],
                            )
                        )
                    return Repeat(rule_id, base, loops, self.max_repeat)

                if len(looping) > 0 and self.max_repeat is not None:
                    compile_log.warning(
                        "Rule %d refers to itself more than once in a sequence; "
                        "its nesting is not capped at %d",
                        rule_id,
                        self.max_repeat,
                    )
                return alt(*(self._sequence(s) for s in sequences))

            case _:
                typing.assert_never(rule)

    def matches(self, message: str) -> bool:
        try:
            return len(message) in self.matchers[ROOT].match(message, 0)
        except RecursionError as e:
            raise ResourceExhausted("recursion limit", sys.getrecursionlimit()) from e


def compile(grammar: Grammar, *, max_repeat: int | None = None) -> CompiledRecognizer:
    """Build a recognizer for the grammar with all its matchers ready to go."""
    return CompiledRecognizer(grammar, max_repeat=max_repeat)
