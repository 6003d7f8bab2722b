"""Recognize messages by tracking every way a rule could have matched.

Instead of asking "where does rule r end if it matches here?" and taking the
first answer, we ask "what could be left of the text after rule r matches a
prefix of it?" and keep *all* of the answers. A sequence is then a fold over
sets: start with `{text}`, and for each rule in the sequence replace every
remaining suffix with everything that rule could leave behind. A message
matches if the empty string is among the things rule 0 can leave.

Nothing ever gets committed to, so a branch that matches locally but leads
nowhere can't hide a branch that works. See `backtrack` for the version that
gets this wrong.

Two things keep this from running away:

- Every rule matches at least one character, and `grammar.validate` rejects
  left recursion, so any recursive call either works on a strictly shorter
  suffix or is a left-corner step that can't repeat without consuming input.
- We know the shortest string each rule can possibly match. A rule that needs
  more text than there is left is not even tried. For `8: 42 | 42 8` this
  means rule 8 can't be nested more than `len(message) // shortest(42)` deep.

Within one search we also remember the answer for each (rule, suffix) pair.
All the suffixes come from the same text, so the suffix is identified by its
length and there are at most `len(grammar) * (len(text) + 1)` real calls.

The search doesn't recurse on the Python stack. Each rule being evaluated is a
generator that yields the (rule, remaining length) pairs it needs answers
for, and a loop in `_Search.remainders` keeps the stack of them by hand. A
message thousands of characters long just makes that list longer.
"""

import collections
import dataclasses
import logging
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

suffix_log = logging.getLogger("msgrules.suffixes")

EMPTY: frozenset = frozenset()

# A rule evaluation in progress. It yields (rule_id, remaining) requests, gets
# sent back the set of remaining lengths for each, and returns its own.
Evaluation = typing.Generator[typing.Tuple[int, int], frozenset[int], frozenset[int]]


@dataclasses.dataclass
class SearchStats:
    """What one search cost.

    calls is the number of rule evaluations that weren't pruned or
    remembered. max_depth is the deepest the evaluation stack got. nesting[r]
    is the most frames of rule r that were ever on the stack at once.
    """

    calls: int = 0
    max_depth: int = 0
    nesting: collections.Counter = dataclasses.field(default_factory=collections.Counter)


class _Search:
    """The transient state of one search: the text, the memo table and the
    statistics. Each search gets its own, so that a recognizer can be
    shared between threads.

    Positions are tracked as the number of characters still left to match,
    which is what the memo is keyed on anyway.
    """

    def __init__(self, recognizer: "SuffixSetRecognizer", text: str):
        self.grammar = recognizer.grammar
        self.shortest = recognizer.shortest
        self.max_depth = recognizer.max_depth
        self.max_calls = recognizer.max_calls
        self.text = text

        self.memo: dict[typing.Tuple[int, int], frozenset[int]] = {}
        self.stats = SearchStats()
        self.active: collections.Counter = collections.Counter()

    def known(self, rule_id: int, remaining: int) -> frozenset[int] | None:
        """The answer, if we have it without evaluating anything."""
        shortest = self.shortest.get(rule_id)
        if shortest is None or shortest > remaining:
            return EMPTY
        return self.memo.get((rule_id, remaining))

    def remainders(self, rule_id: int, remaining: int) -> frozenset[int]:
        """Every number of characters that could be left over after `rule_id`
        matches the start of the last `remaining` characters of the text.
        """
        answer = self.known(rule_id, remaining)
        if answer is not None:
            return answer

        stats = self.stats
        stack: list[typing.Tuple[int, int, Evaluation]] = []

        def push(rule_id: int, remaining: int):
            stats.calls += 1
            if self.max_calls is not None and stats.calls > self.max_calls:
                raise ResourceExhausted("suffix search calls", self.max_calls)

            depth = len(stack) + 1
            if self.max_depth is not None and depth > self.max_depth:
                raise ResourceExhausted("recursion depth", self.max_depth)
            stats.max_depth = max(stats.max_depth, depth)

            self.active[rule_id] += 1
            stats.nesting[rule_id] = max(stats.nesting[rule_id], self.active[rule_id])
            stack.append((rule_id, remaining, self._expand(rule_id, remaining)))

        push(rule_id, remaining)
        sent: frozenset[int] | None = None
        while True:
            top_id, top_remaining, evaluation = stack[-1]
            try:
                request = evaluation.send(sent)  # type: ignore
            except StopIteration as stop:
                result: frozenset[int] = stop.value
                stack.pop()
                self.active[top_id] -= 1
                self.memo[(top_id, top_remaining)] = result
                if len(stack) == 0:
                    return result
                sent = result
                continue

            answer = self.known(*request)
            if answer is not None:
                sent = answer
            else:
                push(*request)
                sent = None

    def _expand(self, rule_id: int, remaining: int) -> Evaluation:
        rule = self.grammar[rule_id]
        match rule:
            case Terminal(char=char):
                if remaining > 0 and self.text[len(self.text) - remaining] == char:
                    return frozenset((remaining - 1,))
                return EMPTY

            case Alternatives(sequences=sequences):
                result: set[int] = set()
                for sequence in sequences:
                    current: set[int] = {remaining}
                    for reference in sequence:
                        following: set[int] = set()
                        for left in current:
                            following.update((yield (reference, left)))
                        current = following
                        if len(current) == 0:
                            break
                    result.update(current)
                return frozenset(result)

            case _:
                typing.assert_never(rule)


class SuffixSetRecognizer:
    grammar: Grammar
    shortest: dict[int, int]
    max_depth: int | None
    max_calls: int | None

    def __init__(
        self,
        grammar: Grammar,
        *,
        max_depth: int | None = None,
        max_calls: int | None = None,
    ):
        validate(grammar)
        self.grammar = grammar
        self.shortest = shortest_lengths(grammar)
        self.max_depth = max_depth
        self.max_calls = max_calls

    def search(self, rule_id: int, text: str) -> typing.Tuple[frozenset[str], SearchStats]:
        """All the suffixes `rule_id` can leave of `text`, along with what it
        took to find them.
        """
        search = _Search(self, text)
        lengths = search.remainders(rule_id, len(text))
        result = frozenset(text[len(text) - length :] for length in lengths)

        sl = suffix_log
        if sl.isEnabledFor(logging.DEBUG):
            sl.debug(
                "rule %d on %r: %d suffixes, %d calls, depth %d",
                rule_id,
                text,
                len(result),
                search.stats.calls,
                search.stats.max_depth,
            )
        return result, search.stats

    def matching_suffixes(self, rule_id: int, text: str) -> set[str]:
        result, _ = self.search(rule_id, text)
        return set(result)

    def matches(self, message: str) -> bool:
        result, _ = self.search(ROOT, message)
        return "" in result


def matching_suffixes(grammar: Grammar, rule_id: int, text: str) -> set[str]:
    return SuffixSetRecognizer(grammar).matching_suffixes(rule_id, text)


def matches(grammar: Grammar, message: str) -> bool:
    return SuffixSetRecognizer(grammar).matches(message)
