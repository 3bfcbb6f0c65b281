"""
Tests for the answer validator.

Covers one rule per question type, the required-field rule, realtime and
batch validation, custom rules and localized messages.
"""

import unittest

from selfassess.assessments.models import Question, QuestionType
from selfassess.assessments.validation import (
    AnswerValidator,
    CustomRule,
    ValidationRule,
    to_date,
    to_number,
)
from selfassess.i18n.translator import Translator


def choice_question(question_type=QuestionType.SINGLE_CHOICE, required=True, **constraints):
    return Question(
        id="q1",
        text="How often?",
        type=question_type,
        required=required,
        constraints={
            "options": [
                {"id": "opt-0", "text": "Never", "value": 0},
                {"id": "opt-1", "text": "Sometimes", "value": 1},
                {"id": "opt-2", "text": "Often", "value": 2},
            ],
            **constraints,
        },
    )


def scale_question(required=True):
    return Question(
        id="scale",
        text="Rate it",
        type=QuestionType.SCALE,
        required=required,
        constraints={"scale_min": 0, "scale_max": 10, "scale_step": 2},
    )


class TestHelpers(unittest.TestCase):
    """Test the parsing helpers."""

    def test_to_number(self):
        self.assertEqual(to_number(3), 3.0)
        self.assertEqual(to_number(" 2.5 "), 2.5)
        self.assertIsNone(to_number(True))
        self.assertIsNone(to_number("abc"))
        self.assertIsNone(to_number(float("nan")))
        self.assertIsNone(to_number(None))

    def test_to_date(self):
        self.assertEqual(to_date("2024-03-01").isoformat(), "2024-03-01")
        self.assertEqual(to_date("2024-03-01T10:00:00Z").isoformat(), "2024-03-01")
        self.assertIsNone(to_date("03/01/2024"))
        self.assertIsNone(to_date(20240301))


class TestSingleChoice(unittest.TestCase):
    """Test single choice validation."""

    def setUp(self):
        self.validator = AnswerValidator()
        self.question = choice_question()

    def test_option_id_and_raw_value_are_equivalent(self):
        by_id = self.validator.validate_answer("opt-1", self.question)
        by_value = self.validator.validate_answer(1, self.question)
        self.assertTrue(by_id.is_valid)
        self.assertTrue(by_value.is_valid)
        self.assertEqual(by_id.error_codes, by_value.error_codes)

    def test_unknown_option(self):
        result = self.validator.validate_answer("opt-9", self.question)
        self.assertFalse(result)
        self.assertEqual(result.error_codes, ["SINGLE_CHOICE_INVALID_OPTION"])
        self.assertEqual(result.errors[0].question_id, "q1")

    def test_boolean_is_not_a_raw_value(self):
        result = self.validator.validate_answer(True, self.question)
        self.assertEqual(result.error_codes, ["SINGLE_CHOICE_INVALID_OPTION"])

    def test_required_missing(self):
        result = self.validator.validate_answer(None, self.question)
        self.assertEqual(result.error_codes, ["FIELD_REQUIRED"])

    def test_optional_missing(self):
        result = self.validator.validate_answer(None, choice_question(required=False))
        self.assertTrue(result.is_valid)

    def test_no_options(self):
        question = Question(id="empty", text="?", type=QuestionType.SINGLE_CHOICE, constraints={"options": []})
        result = self.validator.validate_answer("x", question)
        self.assertEqual(result.error_codes, ["SINGLE_CHOICE_NO_OPTIONS"])


class TestMultipleChoice(unittest.TestCase):
    """Test multiple choice selection bounds."""

    def setUp(self):
        self.validator = AnswerValidator()
        self.question = choice_question(
            QuestionType.MULTIPLE_CHOICE, required=False, min_selections=1, max_selections=2
        )

    def test_selection_bounds(self):
        self.assertEqual(
            self.validator.validate_answer([], self.question).error_codes,
            ["MULTIPLE_CHOICE_MIN_SELECTIONS"]
        )
        self.assertEqual(
            self.validator.validate_answer(["opt-0", "opt-1", "opt-2"], self.question).error_codes,
            ["MULTIPLE_CHOICE_MAX_SELECTIONS"]
        )
        self.assertTrue(self.validator.validate_answer(["opt-0"], self.question).is_valid)
        self.assertTrue(self.validator.validate_answer(["opt-0", "opt-2"], self.question).is_valid)

    def test_invalid_options(self):
        result = self.validator.validate_answer(["opt-0", "nope"], self.question)
        self.assertEqual(result.error_codes, ["MULTIPLE_CHOICE_INVALID_OPTIONS"])
        self.assertIn("nope", result.errors[0].message)

    def test_not_a_list(self):
        result = self.validator.validate_answer("opt-0", self.question)
        self.assertEqual(result.error_codes, ["MULTIPLE_CHOICE_INVALID_FORMAT"])

    def test_repeated_options(self):
        question = choice_question(QuestionType.MULTIPLE_CHOICE, min_selections=2)
        result = self.validator.validate_answer(["opt-2", "opt-2"], question)
        self.assertEqual(result.error_codes, ["MULTIPLE_CHOICE_DUPLICATE_OPTIONS"])
        self.assertIn("opt-2", result.errors[0].message)
        self.assertTrue(self.validator.validate_answer(["opt-1", "opt-2"], question).is_valid)

    def test_raw_values_are_not_option_ids(self):
        result = self.validator.validate_answer([1], self.question)
        self.assertEqual(result.error_codes, ["MULTIPLE_CHOICE_INVALID_OPTIONS"])

    def test_no_options(self):
        question = Question(id="empty", text="?", type=QuestionType.MULTIPLE_CHOICE, constraints={"options": []})
        result = self.validator.validate_answer(["x"], question)
        self.assertEqual(result.error_codes, ["MULTIPLE_CHOICE_NO_OPTIONS"])

    def test_required_defaults_to_one_selection(self):
        question = choice_question(QuestionType.MULTIPLE_CHOICE)
        result = self.validator.validate_answer([], question)
        self.assertEqual(result.error_codes, ["FIELD_REQUIRED", "MULTIPLE_CHOICE_MIN_SELECTIONS"])


class TestScale(unittest.TestCase):
    """Test scale bounds and step alignment."""

    def setUp(self):
        self.validator = AnswerValidator()
        self.question = scale_question()

    def test_valid_values(self):
        for value in (0, 2, "4", 10, 6.0):
            self.assertTrue(self.validator.validate_answer(value, self.question).is_valid, value)

    def test_bounds(self):
        self.assertEqual(self.validator.validate_answer(-2, self.question).error_codes, ["SCALE_BELOW_MIN"])
        self.assertEqual(self.validator.validate_answer(12, self.question).error_codes, ["SCALE_ABOVE_MAX"])

    def test_step(self):
        result = self.validator.validate_answer(3, self.question)
        self.assertEqual(result.error_codes, ["SCALE_INVALID_STEP"])
        self.assertEqual(result.errors[0].message, "Value must move in steps of 2")

    def test_not_a_number(self):
        self.assertEqual(self.validator.validate_answer("high", self.question).error_codes, ["SCALE_INVALID_NUMBER"])
        self.assertEqual(self.validator.validate_answer(False, self.question).error_codes, ["SCALE_INVALID_NUMBER"])

    def test_fractional_step(self):
        question = Question(
            id="fine", text="Rate", type=QuestionType.SCALE,
            constraints={"scale_min": 0, "scale_max": 1, "scale_step": 0.1}
        )
        self.assertTrue(self.validator.validate_answer(0.3, question).is_valid)
        self.assertEqual(self.validator.validate_answer(0.35, question).error_codes, ["SCALE_INVALID_STEP"])


class TestTextNumberDate(unittest.TestCase):
    """Test text, number and date rules."""

    def setUp(self):
        self.validator = AnswerValidator()

    def test_text(self):
        question = Question(
            id="t", text="Describe", type=QuestionType.TEXT,
            constraints={"min_length": 3, "max_length": 10, "pattern": "^[a-z ]+$",
                         "pattern_message": "Lowercase letters only"}
        )
        self.assertTrue(self.validator.validate_answer("calm day", question).is_valid)
        self.assertEqual(self.validator.validate_answer("ab", question).error_codes, ["TEXT_TOO_SHORT"])
        self.assertEqual(self.validator.validate_answer("a" * 11, question).error_codes, ["TEXT_TOO_LONG"])
        self.assertEqual(self.validator.validate_answer(42, question).error_codes, ["TEXT_INVALID_TYPE"])

        mismatch = self.validator.validate_answer("Calm", question)
        self.assertEqual(mismatch.error_codes, ["TEXT_PATTERN_MISMATCH"])
        self.assertEqual(mismatch.errors[0].message, "Lowercase letters only")

    def test_number(self):
        question = Question(
            id="n", text="Hours", type=QuestionType.NUMBER,
            constraints={"min_value": 0, "max_value": 24, "integer_only": True}
        )
        self.assertTrue(self.validator.validate_answer(8, question).is_valid)
        self.assertTrue(self.validator.validate_answer("7", question).is_valid)
        self.assertEqual(self.validator.validate_answer(-1, question).error_codes, ["NUMBER_TOO_SMALL"])
        self.assertEqual(self.validator.validate_answer(25, question).error_codes, ["NUMBER_TOO_LARGE"])
        self.assertEqual(self.validator.validate_answer(7.5, question).error_codes, ["NUMBER_NOT_INTEGER"])
        self.assertEqual(self.validator.validate_answer("many", question).error_codes, ["NUMBER_INVALID"])
        self.assertEqual(self.validator.validate_answer(True, question).error_codes, ["NUMBER_INVALID"])

    def test_date(self):
        question = Question(
            id="d", text="When", type=QuestionType.DATE,
            constraints={"min_date": "2020-01-01", "max_date": "2020-12-31"}
        )
        self.assertTrue(self.validator.validate_answer("2020-06-15", question).is_valid)
        self.assertEqual(self.validator.validate_answer("2019-12-31", question).error_codes, ["DATE_TOO_EARLY"])
        self.assertEqual(self.validator.validate_answer("2021-01-01", question).error_codes, ["DATE_TOO_LATE"])
        self.assertEqual(self.validator.validate_answer("not a date", question).error_codes, ["DATE_INVALID"])


class TestValidatorFeatures(unittest.TestCase):
    """Test realtime, batch, custom rules and localization."""

    def setUp(self):
        self.translator = Translator.from_locale_files()
        self.validator = AnswerValidator(translator=self.translator)

    def test_realtime_skips_required(self):
        question = choice_question()
        self.assertTrue(self.validator.validate_realtime(None, question).is_valid)
        self.assertFalse(self.validator.validate_realtime("opt-9", question).is_valid)

    def test_validate_answers(self):
        q1 = choice_question()
        q2 = scale_question()
        results = self.validator.validate_answers({"q1": "opt-1", "stray": 1}, [q1, q2])

        self.assertTrue(results["q1"].is_valid)
        self.assertEqual(results["scale"].error_codes, ["FIELD_REQUIRED"])
        self.assertEqual(results["stray"].error_codes, ["QUESTION_NOT_FOUND"])

    def test_custom_rule_with_condition(self):
        rule = CustomRule(
            rule_id="no-zero",
            code="ZERO_NOT_ALLOWED",
            check=lambda value, question: "Zero is not allowed" if value in (0, "opt-0") else None,
            condition=lambda question: question.id == "q1",
        )
        self.validator.add_rule(rule)

        self.assertEqual(self.validator.validate_answer("opt-0", choice_question()).error_codes, ["ZERO_NOT_ALLOWED"])
        self.assertTrue(self.validator.validate_answer(0, scale_question()).is_valid)

        self.assertTrue(self.validator.remove_rule("no-zero"))
        self.assertFalse(self.validator.remove_rule("no-zero"))
        self.assertTrue(self.validator.validate_answer("opt-0", choice_question()).is_valid)

    def test_rules_run_in_priority_order(self):
        rule = CustomRule("early", "EARLY", lambda value, question: "early", priority=0)
        self.validator.add_rule(rule)
        result = self.validator.validate_answer(None, choice_question())
        self.assertEqual(result.error_codes, ["EARLY", "FIELD_REQUIRED"])

    def test_warning_rule(self):
        rule = CustomRule("hint", "HINT", lambda value, question: "Consider more detail", severity="warning")
        self.validator.add_rule(rule)
        result = self.validator.validate_answer("opt-1", choice_question())
        self.assertTrue(result.is_valid)
        self.assertEqual([w.code for w in result.warnings], ["HINT"])

    def test_failing_rule_is_reported(self):
        class BrokenRule(ValidationRule):
            rule_id = "broken"

            def validate(self, value, question):
                raise RuntimeError("boom")

        self.validator.add_rule(BrokenRule())
        result = self.validator.validate_answer("opt-1", choice_question())
        self.assertEqual(result.error_codes, ["VALIDATION_RULE_ERROR"])

    def test_localized_messages(self):
        question = choice_question(QuestionType.MULTIPLE_CHOICE, max_selections=2)
        english = self.validator.validate_answer(["opt-0", "opt-1", "opt-2"], question, "en")
        chinese = self.validator.validate_answer(["opt-0", "opt-1", "opt-2"], question, "zh")

        self.assertEqual(english.errors[0].message, "Please select no more than 2 option(s)")
        self.assertEqual(english.error_codes, chinese.error_codes)
        self.assertNotEqual(english.errors[0].message, chinese.errors[0].message)
        self.assertIn("2", chinese.errors[0].message)

    def test_suggestions(self):
        result = self.validator.validate_answer(None, choice_question())
        suggestions = self.validator.get_suggestions(result.errors[0])
        self.assertEqual(len(suggestions), 1)

        unknown = self.validator.validate_answer(["opt-0", "x"], choice_question(QuestionType.MULTIPLE_CHOICE))
        self.assertEqual(self.validator.get_suggestions(unknown.errors[0]), [])

    def test_validation_is_deterministic(self):
        question = scale_question()
        first = self.validator.validate_answer(5, question)
        second = self.validator.validate_answer(5, question)
        self.assertEqual(first.to_dict(), second.to_dict())


if __name__ == "__main__":
    unittest.main()
