from lexer import Lexer, split_lines
from parser import (
    Assignment,
    ElseStatement,
    IfStatement,
    LoopStatement,
    Parser,
    PromptStatement,
    SayStatement,
    WaitStatement,
    find_matching_end,
    find_next_if_skip_target,
)


def _parse(source):
    tokens = Lexer(source, "<test>").tokenize()
    return Parser(tokens, "<test>", split_lines(source)).parse()


def test_skip_target_prefers_else_at_same_depth():
    lines = ["if A == 1", "say 1", "else", "say 2", "end if"]
    assert find_next_if_skip_target(lines, 0) == 2


def test_skip_target_ignores_nested_else():
    lines = [
        "if A == 1",
        "  if B == 2",
        "  else",
        "  end if",
        "end if",
    ]
    assert find_next_if_skip_target(lines, 0) == 4


def test_skip_target_unterminated_returns_length():
    lines = ["if A == 1", "say 1"]
    assert find_next_if_skip_target(lines, 0) == 2


def test_matching_end_respects_nesting():
    lines = ["loop 2", "loop 3", "say x", "end loop", "end loop", "end"]
    assert find_matching_end(lines, 0, "loop") == 4
    assert find_matching_end(lines, 1, "loop") == 3


def test_matching_end_from_else_skips_nested_if():
    lines = ["if A == 1", "else", "if B == 1", "end if", "end if"]
    assert find_matching_end(lines, 1, "if") == 4


def test_matching_end_counts_any_line_starting_with_keyword():
    # Lexical only: an assignment to 'ifx' opens a nesting level.
    lines = ["else", 'ifx="1"', "end if", "end if"]
    assert find_matching_end(lines, 0, "if") == 3


def test_matching_end_unterminated_returns_length():
    assert find_matching_end(["loop 1", "say x"], 0, "loop") == 2


def test_parser_resolves_targets_once():
    program = _parse("start\nif A == \"1\"\nsay \"yes\"\nelse\nsay \"no\"\nend if\nloop 2\nend loop\nend")
    statements = program.statements
    assert len(statements) == 9
    assert isinstance(statements[1], IfStatement)
    assert statements[1].condition == 'A == "1"'
    assert statements[1].skip_target == 3
    assert isinstance(statements[3], ElseStatement)
    assert statements[3].end_target == 5
    assert isinstance(statements[6], LoopStatement)
    assert statements[6].body_start == 7
    assert statements[6].end_target == 7
    assert statements[6].count == "2"


def test_parser_command_arguments():
    program = _parse('say   "hi there"\nwait\nwait 1.5 extra\nprompt NAME = "Who"\nprompt broken\nA = "x=y"')
    say, wait_missing, wait, prompt, broken, assign = program.statements
    assert isinstance(say, SayStatement) and say.text == '"hi there"'
    assert isinstance(wait_missing, WaitStatement) and wait_missing.duration is None
    assert wait.duration == "1.5"
    assert isinstance(prompt, PromptStatement)
    assert prompt.target == "NAME"
    assert prompt.message == ' "Who"'
    assert broken.target is None and broken.message is None
    assert isinstance(assign, Assignment)
    assert assign.target == "A"
    assert assign.value == ' "x=y"'


def test_locations_point_at_source_lines():
    program = _parse("start\n   say \"x\"\nend")
    location = program.statements[1].location
    assert location.line == 2
    assert location.column == 4
    assert location.statement == 'say "x"'
