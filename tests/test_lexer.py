from __future__ import annotations

from typing import List, Optional

import pytest

from extensions import TypeRegistry
from grammar import DEFAULT_TYPES, NUMBER, Scratch, TypeSpec, Value
from lexer import CommandFailure, ErrorCode, Lexer, ParsedLine, code_name, describe


def _lexer(*extra: TypeSpec) -> Lexer:
    registry = TypeRegistry()
    for spec in DEFAULT_TYPES + extra:
        registry.register(spec)
    return Lexer(registry)


def _fail_code(line: str, lexer: Optional[Lexer] = None) -> int:
    with pytest.raises(CommandFailure) as info:
        (lexer or _lexer()).tokenize(line)
    return info.value.code


def test_set_scenario_tokenizes_variable_and_number() -> None:
    parsed = _lexer().tokenize("SET $x 5")
    assert parsed.command == "SET"
    assert parsed.args == [Value("variable", "$x", "$x"), Value("number", 5, "5")]


@pytest.mark.parametrize("line", ["", "   ", "# comment", "   # indented comment", "#"])
def test_blank_and_comment_lines_are_no_ops(line: str) -> None:
    parsed = _lexer().tokenize(line)
    assert parsed == ParsedLine()
    assert parsed.is_empty


def test_command_name_is_uppercased_and_stands_alone() -> None:
    parsed = _lexer().tokenize("  help  ")
    assert parsed.command == "HELP"
    assert parsed.args == []


def test_consecutive_separators_are_skipped() -> None:
    parsed = _lexer().tokenize("ADD   1 \t  2\t")
    assert [a.value for a in parsed.args] == [1, 2]


def test_strings_keep_inner_whitespace_and_either_quote() -> None:
    parsed = _lexer().tokenize("""PRINT 'a b' "it's" """)
    assert [a.value for a in parsed.args] == ["a b", "it's"]
    assert parsed.args[0].literal == "'a b'"


def test_escaped_quote_does_not_close_string() -> None:
    parsed = _lexer().tokenize(r'SAY "say \"hi\"\n"')
    assert parsed.args[0].value == 'say "hi"\n'


def test_mixed_argument_types() -> None:
    parsed = _lexer().tokenize("CMD -3.5 true false += -= - == $Var")
    assert [(a.type, a.value) for a in parsed.args] == [
        ("number", -3.5),
        ("bool", True),
        ("bool", False),
        ("symbol", "+="),
        ("symbol", "-="),
        ("symbol", "-"),
        ("symbol", "=="),
        ("variable", "$Var"),
    ]


def test_unclaimed_character_is_unknown_type() -> None:
    with pytest.raises(CommandFailure) as info:
        _lexer().tokenize("CMD @")
    assert info.value.code == ErrorCode.UNKNOWN_TYPE
    assert info.value.column == 4


def test_mid_line_comment_is_not_a_comment() -> None:
    assert _fail_code("CMD 1 # trailing") == ErrorCode.UNKNOWN_TYPE


def test_unterminated_string_is_unclosed_argument() -> None:
    assert _fail_code('CMD "abc') == ErrorCode.UNCLOSED_ARGUMENT


@pytest.mark.parametrize("line", ["CMD 5a", "CMD $", "CMD tru", "CMD =>", "CMD 1.2.3"])
def test_invalid_literal_is_syntax_error(line: str) -> None:
    assert _fail_code(line) == ErrorCode.SYNTAX_ERROR


def test_token_abutting_a_closing_quote_is_unknown_type() -> None:
    assert _fail_code('CMD "a""b"') == ErrorCode.UNKNOWN_TYPE
    assert _fail_code('CMD "a"5') == ErrorCode.UNKNOWN_TYPE


def test_parse_that_raises_is_parse_failure() -> None:
    def boom(literal: str) -> Value:
        raise RuntimeError("no")

    broken = TypeSpec(name="broken", begin=lambda c, s: c == "@", end=lambda c, s: c == " ", parse=boom)
    assert _fail_code("CMD @x", _lexer(broken)) == ErrorCode.PARSE_FAILURE


def test_type_that_never_closes_is_reported_not_hung() -> None:
    greedy = TypeSpec(
        name="greedy",
        begin=lambda c, s: c == "{",
        end=lambda c, s: False,
        parse=lambda lit: Value("greedy", lit),
    )
    assert _fail_code("CMD {a b c", _lexer(greedy)) == ErrorCode.UNCLOSED_ARGUMENT


def test_scratch_is_fresh_for_each_token() -> None:
    seen: List[Scratch] = []

    def begin(char: str, scratch: Scratch) -> bool:
        if char != "%":
            return False
        seen.append(scratch)
        assert scratch.data == {}
        scratch.data["opened"] = True
        return True

    pct = TypeSpec(name="pct", begin=begin, end=lambda c, s: c == " ", parse=lambda lit: Value("pct", lit), priority=0)
    parsed = _lexer(pct).tokenize("CMD %a %b")
    assert [a.value for a in parsed.args] == ["%a", "%b"]
    assert len(seen) == 2 and seen[0] is not seen[1]


def test_lower_priority_value_wins_shared_first_character() -> None:
    low = TypeSpec(name="low", begin=lambda c, s: c == "a", end=lambda c, s: c == " ", parse=lambda lit: Value("low", lit), priority=1)
    high = TypeSpec(name="high", begin=lambda c, s: c == "a", end=lambda c, s: c == " ", parse=lambda lit: Value("high", lit), priority=5)
    registry = TypeRegistry()
    registry.register(high)
    registry.register(low)
    assert Lexer(registry).tokenize("CMD abc").args[0].type == "low"


def test_unset_priority_ties_go_to_first_registered() -> None:
    first = TypeSpec(name="first", begin=lambda c, s: c == "a", end=lambda c, s: c == " ", parse=lambda lit: Value("first", lit))
    second = TypeSpec(name="second", begin=lambda c, s: c == "a", end=lambda c, s: c == " ", parse=lambda lit: Value("second", lit))
    registry = TypeRegistry()
    registry.register(first)
    registry.register(second)
    assert Lexer(registry).tokenize("CMD abc").args[0].type == "first"


@pytest.mark.parametrize(
    "literal, expected_type",
    [("12", "number"), ("true", "bool"), ("<=", "symbol"), ('"s"', "string"), ("$v", "variable")],
)
def test_literal_of_one_type_never_tagged_as_another(literal: str, expected_type: str) -> None:
    assert _lexer().tokenize(f"CMD {literal}").args[0].type == expected_type


@pytest.mark.parametrize("text", ["0", "42", "-7", "3.25", ".5", "-0.125", "10."])
def test_number_literal_round_trips(text: str) -> None:
    parsed = _lexer().tokenize(f"N {text}").args[0]
    again = NUMBER.parse(parsed.literal or "")
    assert again.value == parsed.value


def test_registering_a_type_twice_keeps_results() -> None:
    line = 'CMD 1 "two" $three true'
    assert _lexer(NUMBER).tokenize(line) == _lexer().tokenize(line)


def test_custom_whitespace_and_comment_markers() -> None:
    lexer = Lexer(DEFAULT_TYPES, whitespace=",", comment=";")
    assert lexer.tokenize("; note").is_empty
    assert [a.value for a in lexer.tokenize("ADD,1,,2").args] == [1, 2]


def test_describe_and_code_name() -> None:
    assert describe(ErrorCode.UNKNOWN_VARIABLE).startswith("Unknown variable")
    assert describe(0x0) == "No errors were found."
    assert "0x42" in describe(0x42)
    assert code_name(ErrorCode.UNKNOWN_VARIABLE) == "UnknownVariable"
    assert code_name(0x42) == "0x42"


def test_error_codes_are_stable() -> None:
    assert [int(c) for c in ErrorCode] == [0x0, 0x1, 0x2, 0x3, 0x4, 0x5, 0x6, 0x7, 0x9, 0xA, 0xB]
