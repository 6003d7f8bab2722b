import argparse
import logging
import sys

from .grammar import GrammarError, parse
from .runtime import Strategy, count_matches


def read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def main(args: list[str]) -> int:
    parser = argparse.ArgumentParser(
        description="Count the messages that match rule 0 of a grammar"
    )
    parser.add_argument(
        "input",
        help="Path to the puzzle input: the rules, a blank line, then the messages. "
        "Use - to read standard input.",
    )
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in Strategy],
        default=Strategy.SUFFIX.value,
        help="Which recognizer to use. 'backtrack' commits to the first match it finds and "
        "can miss messages on ambiguous grammars; the other two are exact. The default is "
        "'suffix'.",
    )
    part = parser.add_mutually_exclusive_group()
    part.add_argument(
        "--part",
        choices=["1", "2", "both"],
        default="both",
        help="1 uses the rules as given, 2 replaces rules 8 and 11 with their looping "
        "versions first, and both (the default) prints one count for each, one per line.",
    )
    part.add_argument(
        "--loops",
        dest="part",
        action="store_const",
        const="2",
        help="Shorthand for --part 2.",
    )
    parser.add_argument(
        "--max-repeat",
        type=int,
        default=None,
        help="Let self-referential rules nest at most this many levels deep. The compiled "
        "recognizer applies the cap while matching rules of the form r: B | P r S; the other "
        "two unroll the grammar to this depth first. The default is no cap.",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=None,
        help="Give up on a message if the search nests deeper than this.",
    )
    parser.add_argument(
        "--max-calls",
        type=int,
        default=None,
        help="Give up on a message if the suffix search needs more than this many steps.",
    )
    parser.add_argument(
        "--jobs",
        type=int,
        default=1,
        help="Check this many messages at once.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log more. Once for a summary of each batch, twice for the details of every "
        "search.",
    )

    parsed = parser.parse_args(args[1:])

    level = logging.WARNING
    if parsed.verbose == 1:
        level = logging.INFO
    elif parsed.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, stream=sys.stderr)

    if parsed.max_repeat is not None and parsed.max_repeat < 1:
        parser.error("--max-repeat must be at least 1")
    if parsed.jobs < 1:
        parser.error("--jobs must be at least 1")

    text = read_input(parsed.input)

    parts = [False, True] if parsed.part == "both" else [parsed.part == "2"]
    try:
        grammar, messages = parse(text)
        results = [
            count_matches(
                grammar,
                messages,
                loops=loops,
                strategy=Strategy(parsed.strategy),
                max_repeat=parsed.max_repeat,
                max_depth=parsed.max_depth,
                max_calls=parsed.max_calls,
                jobs=parsed.jobs,
            )
            for loops in parts
        ]
    except GrammarError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    for result in results:
        print(result)
    return 0


def console_main():
    sys.exit(main(sys.argv))


if __name__ == "__main__":
    console_main()
