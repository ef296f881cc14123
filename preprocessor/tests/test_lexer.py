"""
Unit tests for lexer.py

Tests preprocessing-token kinds, spans, splices and comment handling.
"""

import unittest

from core.errors import ParseError
from preprocessor.lexer import iter_tokens, lex
from preprocessor.models import TokenKind


def lexemes(text):
    return [token.lexeme for token in lex(text)]


class TestTokenKinds(unittest.TestCase):
    """Test that each token class is recognized."""

    def test_define_line(self):
        tokens = lex("#define ASPECT_RATIO 1.653\n")
        self.assertEqual([t.lexeme for t in tokens], ["#", "define", "ASPECT_RATIO", "1.653"])
        self.assertEqual(
            [t.kind for t in tokens],
            [TokenKind.PUNCTUATOR, TokenKind.IDENTIFIER, TokenKind.IDENTIFIER, TokenKind.NUMBER],
        )
        self.assertTrue(tokens[0].at_line_start)
        self.assertFalse(tokens[1].at_line_start)

    def test_pp_numbers(self):
        self.assertEqual(lexemes("1.5e+10f 0x1p-3 1'000'000 .5"), ["1.5e+10f", "0x1p-3", "1'000'000", ".5"])
        self.assertTrue(all(t.kind is TokenKind.NUMBER for t in lex("42 0xFFu 3.0L")))

    def test_string_and_char_literals(self):
        tokens = lex('u8"hi" L\'a\' "x\\"y" \'\\n\'')
        self.assertEqual(
            [t.kind for t in tokens],
            [TokenKind.STRING, TokenKind.CHAR, TokenKind.STRING, TokenKind.CHAR],
        )
        self.assertEqual(tokens[0].lexeme, 'u8"hi"')
        self.assertEqual(tokens[2].lexeme, '"x\\"y"')

    def test_raw_string_literal(self):
        tokens = lex('R"x(a ) " b)x" next')
        self.assertEqual(tokens[0].kind, TokenKind.STRING)
        self.assertEqual(tokens[0].lexeme, 'R"x(a ) " b)x"')
        self.assertEqual(tokens[1].lexeme, "next")

    def test_prefix_identifier_without_quote(self):
        tokens = lex("L + u8")
        self.assertEqual([t.kind for t in tokens], [TokenKind.IDENTIFIER, TokenKind.PUNCTUATOR, TokenKind.IDENTIFIER])

    def test_longest_match_punctuators(self):
        self.assertEqual(lexemes("a->*b::c<=>d...e<<=f"), ["a", "->*", "b", "::", "c", "<=>", "d", "...", "e", "<<=", "f"])

    def test_digraphs_are_normalized(self):
        self.assertEqual(lexemes("%:define A<:2:>"), ["#", "define", "A", "[", "2", "]"])

    def test_unknown_character_is_kept(self):
        tokens = lex("a @ b")
        self.assertEqual(tokens[1].kind, TokenKind.OTHER)
        self.assertEqual(tokens[1].lexeme, "@")

    def test_unterminated_quote_becomes_other(self):
        tokens = lex("x = 'abc\ny")
        self.assertEqual(tokens[2].kind, TokenKind.OTHER)
        self.assertEqual(tokens[-1].lexeme, "y")


class TestLinesAndSpans(unittest.TestCase):
    """Test line/column bookkeeping, splices and comments."""

    def test_spans_and_positions(self):
        tokens = lex("int x;\n  return y;")
        ret = tokens[3]
        self.assertEqual(ret.lexeme, "return")
        self.assertEqual(ret.span.line, 2)
        self.assertEqual(ret.span.column, 3)
        self.assertEqual(ret.span.start, 9)
        self.assertEqual(ret.span.end, 15)
        self.assertTrue(ret.at_line_start)

    def test_line_splice_continues_logical_line(self):
        tokens = lex("#define A \\\n  (1 + 2)\nint z;")
        one = [t for t in tokens if t.lexeme == "1"][0]
        self.assertFalse(one.at_line_start)
        self.assertEqual(one.span.line, 2)
        int_token = [t for t in tokens if t.lexeme == "int"][0]
        self.assertTrue(int_token.at_line_start)
        self.assertEqual(int_token.span.line, 3)

    def test_comments_are_dropped(self):
        self.assertEqual(lexemes("a /* b \n c */ d // e\nf"), ["a", "d", "f"])

    def test_block_comment_sets_leading_space(self):
        tokens = lex("a/**/b")
        self.assertTrue(tokens[1].has_leading_space)

    def test_spliced_line_comment(self):
        self.assertEqual(lexemes("// one \\\n two\nthree"), ["three"])

    def test_unterminated_block_comment(self):
        with self.assertRaises(ParseError) as ctx:
            lex("int a; /* never closed")
        self.assertEqual(ctx.exception.line, 1)

    def test_unterminated_raw_string(self):
        with self.assertRaises(ParseError):
            lex('R"d(abc')

    def test_leading_space_flag(self):
        tokens = lex("F(x) G (y)")
        self.assertFalse(tokens[1].has_leading_space)
        self.assertTrue(tokens[5].has_leading_space)

    def test_iter_tokens_is_lazy(self):
        stream = iter_tokens("a b /* unterminated", "lazy.cpp")
        first = next(stream)
        self.assertEqual(first.lexeme, "a")
        self.assertEqual(first.span.path, "lazy.cpp")
        next(stream)
        with self.assertRaises(ParseError):
            next(stream)


if __name__ == "__main__":
    unittest.main()
