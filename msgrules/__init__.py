"""Decide whether messages match a grammar of numbered rules, including rules
that refer to themselves.

The grammar model and its text format live in [grammar]. [loops] puts the
self-referential rules in (or unrolls them back out). There are three
recognizers: [backtrack], which commits to the first match and so gets
ambiguous grammars wrong, [suffixes], which tracks every possible remainder,
and [compiled], which builds shared matcher objects ahead of time. [runtime]
runs batches of messages through any of them.
"""
from . import backtrack
from . import compiled
from . import grammar
from . import loops
from . import runtime
from . import suffixes

from .grammar import (
    ROOT,
    Alternatives,
    Grammar,
    GrammarError,
    GrammarSyntaxError,
    LeftRecursiveRule,
    ResourceExhausted,
    Rule,
    Terminal,
    UndefinedRuleReference,
    parse,
    parse_rule,
    shortest_lengths,
    validate,
)
from .loops import LOOP_RULES, add_loops, rewrite_with_bound
from .backtrack import BacktrackingRecognizer
from .suffixes import SearchStats, SuffixSetRecognizer, matching_suffixes
from .compiled import CompiledRecognizer
from .runtime import (
    BatchResult,
    Strategy,
    check_messages,
    count_matches,
    count_valid_messages,
    make_recognizer,
)
