"""Tests for row-label templates and computed-field expressions."""

from decimal import Decimal

from tabula.schema.expressions import (
    ConcatNode,
    FieldNode,
    LiteralNode,
    NullNode,
    evaluate_expression,
    parse_expression,
    parse_template,
    render_template,
)


class TestParsing:
    def test_template_parts(self):
        node = parse_template("Hi {{ Name }}!")
        assert node.parts == (LiteralNode("Hi "), FieldNode("Name"), LiteralNode("!"))

    def test_concat_arguments(self):
        node = parse_expression("concat(First, ' ', \"Last\", {{Code}})")
        assert isinstance(node, ConcatNode)
        assert node.arguments == (
            FieldNode("First"),
            LiteralNode(" "),
            LiteralNode("Last"),
            FieldNode("Code"),
        )

    def test_comma_inside_quotes_is_literal(self):
        node = parse_expression("concat(City, ', ', Country)")
        assert node.arguments[1] == LiteralNode(", ")

    def test_escaped_quote_inside_literal(self):
        node = parse_expression("concat('it\\'s ', Name)")
        assert node.arguments[0] == LiteralNode("it's ")

    def test_unterminated_quote_is_null(self):
        assert isinstance(parse_expression("concat('oops, Name)"), NullNode)

    def test_unrecognized_argument_is_null(self):
        node = parse_expression("concat(Name, 42 + 1)")
        assert isinstance(node.arguments[1], NullNode)

    def test_plain_text_is_not_an_expression(self):
        assert isinstance(parse_expression("just words"), NullNode)


class TestEvaluation:
    def test_render_template(self):
        assert render_template("{{Name}} ({{Age}})", {"Name": "Ada", "Age": 36}) == "Ada (36)"

    def test_template_lookup_ignores_case(self):
        assert render_template("{{name}}", {"Name": "Ada"}) == "Ada"

    def test_missing_placeholder_renders_empty(self):
        assert render_template("{{Name}} {{Missing}}", {"Name": "Ada"}) == "Ada"

    def test_blank_result_is_none(self):
        assert render_template("{{Missing}}", {}) is None
        assert render_template("", {"Name": "Ada"}) is None

    def test_braces_in_values_are_not_reinterpreted(self):
        values = {"Name": "{{Secret}}", "Secret": "x"}
        assert render_template("{{Name}}", values) == "{{Secret}}"

    def test_concat_skips_missing_and_null_arguments(self):
        values = {"First": "Ada", "Last": "Lovelace"}
        assert evaluate_expression("concat(First, ' ', Middle, Last)", values) == "Ada Lovelace"
        assert evaluate_expression("concat(First, 1 + 1)", values) == "Ada"

    def test_concat_formats_canonical_values(self):
        values = {"Done": True, "Cost": Decimal("9.50")}
        assert evaluate_expression("concat(Done, '/', Cost)", values) == "true/9.50"

    def test_template_expression(self):
        assert evaluate_expression("#{{Code}}", {"Code": "A1"}) == "#A1"

    def test_unknown_expression_is_none(self):
        assert evaluate_expression("sum(Cost)", {"Cost": 1}) is None
        assert evaluate_expression(None, {}) is None
