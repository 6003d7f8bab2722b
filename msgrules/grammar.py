"""Rules, grammars, and the text format they come in.

A grammar here is about as small as a context-free grammar gets: every rule is
either a single literal character, or a list of alternatives where each
alternative is a sequence of other rules, referenced by number. Like this:

    0: 4 1 5
    1: 2 3 | 3 2
    2: 4 4 | 5 5
    3: 4 5 | 5 4
    4: "a"
    5: "b"

Rules refer to each other by id, and only by id. We never build an object
graph where rule 8 holds a pointer to rule 8; the recognizers go back through
the `Grammar` table every time they follow a reference. That is what lets a
rule refer to itself without anybody having to expand it first.

The text we get handed also has a list of messages after the rules, separated
by a blank line. `parse` returns both.
"""

import collections.abc
import dataclasses
import re
import typing

ROOT = 0


###############################################################################
# Errors
###############################################################################
class GrammarError(Exception):
    """Something is wrong with the grammar itself. These are not recoverable,
    and are reported once before any message is looked at.
    """

    pass


class GrammarSyntaxError(GrammarError):
    line: str
    line_number: int | None
    reason: str

    def __init__(self, reason: str, line: str, line_number: int | None = None):
        super().__init__(reason, line, line_number)
        self.reason = reason
        self.line = line
        self.line_number = line_number

    def __str__(self):
        where = f"line {self.line_number}" if self.line_number is not None else "rule"
        return f"{where}: {self.reason}: {self.line!r}"


class UndefinedRuleReference(GrammarError):
    rule_id: int | None
    missing: int

    def __init__(self, rule_id: int | None, missing: int):
        super().__init__(rule_id, missing)
        self.rule_id = rule_id
        self.missing = missing

    def __str__(self):
        if self.rule_id is None:
            return f"The grammar has no root rule ({self.missing})"
        return f"Rule {self.rule_id} refers to rule {self.missing}, which is not defined"


class LeftRecursiveRule(GrammarError):
    cycle: list[int]

    def __init__(self, cycle: list[int]):
        super().__init__(cycle)
        self.cycle = cycle

    def __str__(self):
        path = " -> ".join(str(rule_id) for rule_id in self.cycle)
        return f"Rule {self.cycle[0]} is left-recursive: {path}"


class ResourceExhausted(Exception):
    """A search went past one of the limits it was given. This is about one
    message, not about the grammar.
    """

    limit: str
    value: int

    def __init__(self, limit: str, value: int):
        super().__init__(limit, value)
        self.limit = limit
        self.value = value

    def __str__(self):
        return f"Exceeded {self.limit} of {self.value}"


###############################################################################
# Rules
###############################################################################
Sequence = typing.Tuple[int, ...]


@dataclasses.dataclass(frozen=True)
class Terminal:
    """Matches exactly one character."""

    char: str

    def __post_init__(self):
        if len(self.char) != 1:
            raise ValueError(f"A terminal is exactly one character, not {self.char!r}")

    def __str__(self):
        return f'"{self.char}"'


@dataclasses.dataclass(frozen=True)
class Alternatives:
    """Matches if any one of the sequences matches.

    Sequences can't be empty, and neither can the list of them. That means
    every rule eats at least one character when it matches, which is the
    thing that makes self-reference safe as long as the reference isn't the
    first thing in the sequence.
    """

    sequences: typing.Tuple[Sequence, ...]

    def __post_init__(self):
        if len(self.sequences) == 0:
            raise ValueError("A rule needs at least one alternative")
        for sequence in self.sequences:
            if len(sequence) == 0:
                raise ValueError("An alternative needs at least one rule in it")

    @classmethod
    def of(cls, *sequences: typing.Iterable[int]) -> "Alternatives":
        return Alternatives(tuple(tuple(sequence) for sequence in sequences))

    def references(self) -> typing.Iterator[int]:
        for sequence in self.sequences:
            yield from sequence

    def __str__(self):
        return " | ".join(" ".join(str(s) for s in sequence) for sequence in self.sequences)


Rule = Terminal | Alternatives


class Grammar(collections.abc.Mapping):
    """An immutable table of rules, keyed by id.

    Anything that wants a different grammar gets a new one from `replace`;
    nobody edits one of these in place.
    """

    _rules: dict[int, Rule]

    def __init__(self, rules: typing.Mapping[int, Rule] | None = None):
        self._rules = dict(rules or {})

    def __getitem__(self, rule_id: int) -> Rule:
        return self._rules[rule_id]

    def __iter__(self) -> typing.Iterator[int]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"Grammar({self._rules!r})"

    def replace(self, updates: typing.Mapping[int, Rule]) -> "Grammar":
        """Return a new grammar with the given rules added or redefined."""
        rules = dict(self._rules)
        rules.update(updates)
        return Grammar(rules)

    def format(self) -> str:
        return "\n".join(f"{rule_id}: {self._rules[rule_id]}" for rule_id in sorted(self._rules))


###############################################################################
# Parsing
###############################################################################
_ID = re.compile(r"[0-9]+")
_TERMINAL = re.compile(r'"(.)"')


def parse_rule(line: str, line_number: int | None = None) -> typing.Tuple[int, Rule]:
    """Parse one `id: body` line into the id and the rule."""
    name, sep, body = line.partition(":")
    if not sep:
        raise GrammarSyntaxError("missing ':' separator", line, line_number)

    name = name.strip()
    if not _ID.fullmatch(name):
        raise GrammarSyntaxError(f"rule id {name!r} is not an unsigned integer", line, line_number)

    body = body.strip()
    if body.startswith('"'):
        match = _TERMINAL.fullmatch(body)
        if match is None:
            raise GrammarSyntaxError("a terminal is one character in quotes", line, line_number)
        return int(name), Terminal(match.group(1))

    sequences = []
    for alternative in body.split("|"):
        tokens = alternative.split()
        if len(tokens) == 0:
            raise GrammarSyntaxError("empty alternative", line, line_number)
        for token in tokens:
            if not _ID.fullmatch(token):
                raise GrammarSyntaxError(
                    f"{token!r} is not a rule id", line, line_number
                )
        sequences.append(tuple(int(token) for token in tokens))

    return int(name), Alternatives(tuple(sequences))


def parse(text: str) -> typing.Tuple[Grammar, list[str]]:
    """Parse the rules and the messages out of the puzzle text.

    The rules come first, then a blank line, then one message per line. The
    messages are optional. The grammar is validated before it is returned, so
    anything that comes back from here is safe to match against.
    """
    lines = text.strip().splitlines()

    rules: dict[int, Rule] = {}
    index = 0
    while index < len(lines) and lines[index].strip() != "":
        rule_id, rule = parse_rule(lines[index], index + 1)
        if rule_id in rules:
            raise GrammarSyntaxError(f"rule {rule_id} is defined twice", lines[index], index + 1)
        rules[rule_id] = rule
        index += 1

    messages = [line.rstrip() for line in lines[index:]]
    messages = [message for message in messages if message != ""]

    grammar = Grammar(rules)
    validate(grammar)
    return grammar, messages


###############################################################################
# Analysis
###############################################################################
def validate(grammar: Grammar, root: int = ROOT):
    """Check that every rule we can refer to exists, and that nothing is
    left-recursive.

    Left recursion is the one kind of self-reference that the recognizers
    can't handle: `8: 8 42` asks for rule 8 at the same position it is
    already trying rule 8, and that never bottoms out.
    """
    if root not in grammar:
        raise UndefinedRuleReference(None, root)

    for rule_id in sorted(grammar):
        rule = grammar[rule_id]
        if isinstance(rule, Alternatives):
            for reference in rule.references():
                if reference not in grammar:
                    raise UndefinedRuleReference(rule_id, reference)

    cycle = find_left_recursion(grammar)
    if cycle is not None:
        raise LeftRecursiveRule(cycle)


def find_left_recursion(grammar: Grammar) -> list[int] | None:
    """Look for a cycle in the "left corner" graph, where each rule points at
    the first rule of each of its sequences. Returns the cycle, starting and
    ending with the same id, or None.
    """
    corners: dict[int, list[int]] = {}
    for rule_id, rule in grammar.items():
        if isinstance(rule, Alternatives):
            corners[rule_id] = list(dict.fromkeys(sequence[0] for sequence in rule.sequences))

    # Iterative DFS, with the classic white/grey/black coloring.
    done: set[int] = set()
    for start in sorted(corners):
        if start in done:
            continue

        path: list[int] = []
        on_path: set[int] = set()
        stack: list[typing.Tuple[int, typing.Iterator[int]]] = [(start, iter(corners[start]))]
        path.append(start)
        on_path.add(start)
        while len(stack) > 0:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                path.pop()
                on_path.discard(node)
                done.add(node)
                continue

            if child in on_path:
                return path[path.index(child) :] + [child]
            if child in done or child not in corners:
                continue

            stack.append((child, iter(corners[child])))
            path.append(child)
            on_path.add(child)

    return None


def shortest_lengths(grammar: Grammar) -> dict[int, int]:
    """The length of the shortest string each rule can match.

    A rule that can't derive any finite string at all (say, `8: 42 8` with
    nothing else) is left out of the result. Such a rule never matches
    anything.

    Like FIRST sets, this is much easier to get by iterating to a fixed point
    than by recursing with a visited set: start with the terminals, and keep
    relaxing every sequence until nothing gets any shorter.
    """
    lengths: dict[int, int] = {}
    for rule_id, rule in grammar.items():
        if isinstance(rule, Terminal):
            lengths[rule_id] = 1

    changed = True
    while changed:
        changed = False
        for rule_id, rule in grammar.items():
            if not isinstance(rule, Alternatives):
                continue

            best = lengths.get(rule_id)
            for sequence in rule.sequences:
                total = 0
                for reference in sequence:
                    length = lengths.get(reference)
                    if length is None:
                        break
                    total += length
                else:
                    if best is None or total < best:
                        best = total

            if best is not None and best != lengths.get(rule_id):
                lengths[rule_id] = best
                changed = True

    return lengths


def self_referential_rules(grammar: Grammar) -> set[int]:
    """The rules that mention themselves directly in one of their sequences."""
    return {
        rule_id
        for rule_id, rule in grammar.items()
        if isinstance(rule, Alternatives) and rule_id in set(rule.references())
    }
