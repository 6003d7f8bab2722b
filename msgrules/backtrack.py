"""A plain recursive-descent recognizer that commits to the first thing that
works.

This is the obvious way to do it, and it's wrong. When a rule has more than
one alternative that can match at a position, we take the first one that
matches *locally* and never reconsider it, even if whatever comes next in the
enclosing sequence then fails. Consider

    0: 1 2
    1: 3 | 3 3
    2: 3
    3: "a"

and the message "aaa". Rule 1 matches "a" with its first alternative, rule 2
matches the second "a", and then we're stuck one character short. The answer
we needed was for rule 1 to take "aa", but we already moved on.

For grammars where every alternative of a rule matches the same length (the
first sample grammar, for example) this can't happen and the answers are
right. For the looping rules it goes wrong all the time: `8: 42 | 42 8` always
takes exactly one 42. `suffixes.SuffixSetRecognizer` does this properly.
"""

import logging
import sys
import typing

from .grammar import ROOT, Alternatives, Grammar, ResourceExhausted, Terminal, validate

backtrack_log = logging.getLogger("msgrules.backtrack")


class BacktrackingRecognizer:
    grammar: Grammar
    max_depth: int | None

    def __init__(self, grammar: Grammar, *, max_depth: int | None = None):
        validate(grammar)
        self.grammar = grammar
        self.max_depth = max_depth

    def try_rule(self, message: str, rule_id: int, position: int, depth: int = 0) -> int | None:
        """Try to match `rule_id` at `position`, returning the position just
        past the match or None.
        """
        if self.max_depth is not None and depth > self.max_depth:
            raise ResourceExhausted("recursion depth", self.max_depth)

        rule = self.grammar[rule_id]
        match rule:
            case Terminal(char=char):
                if position < len(message) and message[position] == char:
                    return position + 1
                return None

            case Alternatives(sequences=sequences):
                bl = backtrack_log
                for index, sequence in enumerate(sequences):
                    cursor: int | None = position
                    for reference in sequence:
                        assert cursor is not None
                        cursor = self.try_rule(message, reference, cursor, depth + 1)
                        if cursor is None:
                            break

                    if cursor is not None:
                        if bl.isEnabledFor(logging.DEBUG):
                            bl.debug(
                                "{indent}{rule}.{index} [{start}, {end}) COMMIT".format(
                                    indent=" " * depth,
                                    rule=rule_id,
                                    index=index,
                                    start=position,
                                    end=cursor,
                                )
                            )
                        return cursor

                return None

            case _:
                typing.assert_never(rule)

    def matches(self, message: str) -> bool:
        try:
            end = self.try_rule(message, ROOT, 0)
        except RecursionError as e:
            raise ResourceExhausted("recursion limit", sys.getrecursionlimit()) from e
        return end == len(message)


def matches(grammar: Grammar, message: str) -> bool:
    return BacktrackingRecognizer(grammar).matches(message)
