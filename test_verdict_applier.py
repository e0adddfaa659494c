"""
Tests for applying the grader's per-word verdicts.
"""

import sys
import unittest
from pathlib import Path

from pydantic import ValidationError

# Add the src directory to the Python path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from quran_hifz.api_clients import Ayah
from quran_hifz.progress import WordProgressTracker, WordStatus
from quran_hifz.verdict import GradingResponse, RecitationVerdictApplier, WordVerdict

AYAH = Ayah(number=6222, text="قُلْ هُوَ ٱللَّهُ أَحَدٌ", number_in_surah=1)
WORDS = ["قُلْ", "هُوَ", "ٱللَّهُ", "أَحَدٌ"]


def verdicts(*statuses):
    return [WordVerdict(word=word, status=status) for word, status in zip(WORDS, statuses)]


class TestRecitationVerdictApplier(unittest.TestCase):
    def setUp(self):
        self.tracker = WordProgressTracker()
        self.tracker.initialize([AYAH], 1, 1)
        self.applier = RecitationVerdictApplier(self.tracker)

    def statuses(self):
        return [w.status for w in self.tracker.current_words()]

    def test_all_correct_completes_ayah(self):
        result = self.applier.apply(verdicts("correct", "correct", "correct", "correct"))
        self.assertTrue(result.completed)
        self.assertEqual(result.correct, [0, 1, 2, 3])
        self.assertTrue(self.tracker.is_ayah_complete(0))

    def test_wrong_word_blocks_completion(self):
        result = self.applier.apply(verdicts("correct", "wrong", "correct", "correct"))
        self.assertFalse(result.completed)
        self.assertEqual(result.wrong, [1])
        self.assertEqual(self.statuses(), [
            WordStatus.CORRECT, WordStatus.WRONG, WordStatus.CORRECT, WordStatus.CORRECT,
        ])

    def test_short_verdict_list_promotes_revealed_words_only(self):
        self.tracker.set_word_status(0, 2, WordStatus.REVEALED)
        result = self.applier.apply(verdicts("correct", "correct"))

        self.assertEqual(result.promoted, [2])
        self.assertEqual(self.statuses(), [
            WordStatus.CORRECT, WordStatus.CORRECT, WordStatus.CORRECT, WordStatus.HIDDEN,
        ])
        self.assertNotIn(WordStatus.WRONG, self.statuses())
        self.assertFalse(result.completed)

    def test_short_list_completes_when_rest_was_revealed(self):
        self.tracker.set_word_status(0, 2, WordStatus.REVEALED)
        self.tracker.set_word_status(0, 3, WordStatus.REVEALED)
        result = self.applier.apply(verdicts("correct", "correct"))
        self.assertTrue(result.completed)

    def test_empty_verdict_list(self):
        self.tracker.set_word_status(0, 0, WordStatus.REVEALED)
        result = self.applier.apply([])
        self.assertEqual(result.promoted, [0])
        self.assertEqual(self.statuses()[1:], [WordStatus.HIDDEN] * 3)

    def test_extra_verdicts_are_ignored(self):
        extra = verdicts("correct", "correct", "correct", "correct") + [WordVerdict(word="زائد", status="wrong")]
        result = self.applier.apply(extra)
        self.assertEqual(result.ignored_verdicts, 1)
        self.assertTrue(result.completed)

    def test_already_complete_ayah_does_not_complete_again(self):
        self.applier.apply(verdicts("correct", "correct", "correct", "correct"))
        result = self.applier.apply(verdicts("correct", "correct", "correct", "correct"))
        self.assertFalse(result.completed)

    def test_wrong_overrides_earlier_correct(self):
        self.applier.apply(verdicts("correct", "correct", "correct", "correct"))
        self.applier.apply(verdicts("correct", "correct", "correct", "wrong"))
        self.assertFalse(self.tracker.is_ayah_complete(0))
        self.assertEqual(self.statuses()[3], WordStatus.WRONG)

    def test_no_current_ayah(self):
        self.tracker.clear()
        result = self.applier.apply(verdicts("correct"))
        self.assertFalse(result.completed)


class TestVerdictSchema(unittest.TestCase):
    def test_valid_response(self):
        parsed = GradingResponse.model_validate({"results": [{"word": "قُلْ", "status": "correct"}]})
        self.assertEqual(parsed.results[0].status, "correct")

    def test_rejects_unknown_status(self):
        with self.assertRaises(ValidationError):
            GradingResponse.model_validate({"results": [{"word": "قُلْ", "status": "maybe"}]})

    def test_rejects_missing_results(self):
        with self.assertRaises(ValidationError):
            GradingResponse.model_validate({"isCorrect": True})


if __name__ == "__main__":
    unittest.main()
