"""Putting loops into a grammar, and taking them back out again.

The second half of the puzzle swaps two rules for versions that refer to
themselves:

    8: 42 | 42 8
    11: 42 31 | 42 11 31

Rule 8 is now "one or more 42s", and rule 11 is "n 42s followed by n 31s". You
can't expand either of those into a finite list of strings, which is fine as
long as nobody tries to. `add_loops` just drops them in; the recognizers look
rules up by id as they go and each trip around the loop eats input, so they
stop when the message runs out.

`rewrite_with_bound` is the other option: unroll every self-referential rule
a fixed number of times, so that the grammar is finite again. It can then
miss messages that need deeper nesting than the bound allows, but in exchange
nothing in it refers to itself.
"""

import logging

from .grammar import Alternatives, Grammar, Rule, Sequence, self_referential_rules

LOOP_RULES: dict[int, Rule] = {
    8: Alternatives.of([42], [42, 8]),
    11: Alternatives.of([42, 31], [42, 11, 31]),
}

rewrite_log = logging.getLogger("msgrules.loops")


def add_loops(grammar: Grammar) -> Grammar:
    """Return a copy of the grammar with rules 8 and 11 replaced by their
    looping versions. A grammar that doesn't have one of them doesn't get it.
    """
    return grammar.replace(
        {rule_id: rule for rule_id, rule in LOOP_RULES.items() if rule_id in grammar}
    )


def _substitute(sequence: Sequence, rule_id: int, replacement: int) -> Sequence:
    return tuple(replacement if s == rule_id else s for s in sequence)


def rewrite_with_bound(grammar: Grammar, k: int) -> Grammar:
    """Unroll every self-referential rule so that it nests at most `k` deep.

    For a rule `r` with base sequences B (the ones that don't mention r) and
    recursive sequences R (the ones that do), we allocate fresh ids r_1 ...
    r_{k-1} above everything in the grammar and define

        r_1 = B
        r_j = B | R with r replaced by r_{j-1}

    and then r itself becomes B | R with r replaced by r_{k-1}. Every other
    rule is left exactly as it was, and the grammar passed in is not touched.

    Nothing in the result refers to itself, so rewriting it again with the
    same bound gives back the same grammar.
    """
    if k < 1:
        raise ValueError(f"The repetition bound must be at least 1, not {k}")

    loops = sorted(self_referential_rules(grammar))
    next_id = max(grammar, default=-1) + 1
    updates: dict[int, Rule] = {}
    for rule_id in loops:
        rule = grammar[rule_id]
        assert isinstance(rule, Alternatives)

        base: list[Sequence] = [s for s in rule.sequences if rule_id not in s]
        recursive: list[Sequence] = [s for s in rule.sequences if rule_id in s]
        if len(base) == 0:
            # Never bottoms out, so it never matches anything. There is
            # nothing to unroll.
            rewrite_log.info("Rule %d has no way out of its loop; leaving it alone", rule_id)
            continue

        previous: int | None = None
        for _ in range(k - 1):
            body: list[Sequence] = list(base)
            if previous is not None:
                body.extend(_substitute(s, rule_id, previous) for s in recursive)
            updates[next_id] = Alternatives(tuple(body))
            previous = next_id
            next_id += 1

        body = list(base)
        if previous is not None:
            body.extend(_substitute(s, rule_id, previous) for s in recursive)
        updates[rule_id] = Alternatives(tuple(body))

        rewrite_log.debug("Unrolled rule %d to depth %d", rule_id, k)

    return grammar.replace(updates)
